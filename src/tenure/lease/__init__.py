"""Lease subsystem — escrowed rental agreements over the asset token."""

from tenure.lease.escrow import LeaseEscrow

__all__ = ["LeaseEscrow"]
