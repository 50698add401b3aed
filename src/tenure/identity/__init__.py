"""Identity subsystem — verified-identity directory."""

from tenure.identity.directory import IdentityDirectory

__all__ = ["IdentityDirectory"]
