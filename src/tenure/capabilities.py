"""Capability table — the single place authorization is decided.

Each account holds a set of capabilities. Every privileged operation calls
``require_capability(caller, cap)`` before touching state. Only an ADMIN
may grant or revoke.
"""

from __future__ import annotations

import enum
from typing import Dict, Iterable, Set

from tenure.errors import AuthorizationError, InvalidArgument


class Capability(str, enum.Enum):
    """Privileges an account may hold."""
    ADMIN = "admin"
    AGENT = "agent"
    COMPLIANCE_OFFICER = "compliance_officer"
    REGISTRAR = "registrar"
    TOKEN = "token"


# Capabilities the deployer receives at bootstrap.
OPERATOR_CAPABILITIES = frozenset({
    Capability.ADMIN,
    Capability.AGENT,
    Capability.COMPLIANCE_OFFICER,
    Capability.REGISTRAR,
})


class CapabilityTable:
    """Explicit ``{account → set[Capability]}`` mapping.

    Usage:
        table = CapabilityTable(admin="operator")
        table.grant("operator", "agent-1", Capability.AGENT)
        table.require_capability("agent-1", Capability.AGENT)
    """

    def __init__(self, admin: str) -> None:
        if not admin:
            raise InvalidArgument("Admin account must be non-empty")
        self._table: Dict[str, Set[Capability]] = {admin: set(OPERATOR_CAPABILITIES)}

    def has_capability(self, account: str, cap: Capability) -> bool:
        return cap in self._table.get(account, set())

    def require_capability(self, caller: str, cap: Capability) -> None:
        """Raise AuthorizationError unless caller holds cap."""
        if not self.has_capability(caller, cap):
            raise AuthorizationError(
                f"Account {caller!r} lacks required capability: {cap.value}"
            )

    def grant(self, caller: str, account: str, cap: Capability) -> None:
        self.require_capability(caller, Capability.ADMIN)
        if not account:
            raise InvalidArgument("Account must be non-empty")
        self._table.setdefault(account, set()).add(cap)

    def revoke(self, caller: str, account: str, cap: Capability) -> None:
        self.require_capability(caller, Capability.ADMIN)
        held = self._table.get(account)
        if held is None or cap not in held:
            return
        held.discard(cap)
        if not held:
            del self._table[account]

    def capabilities_of(self, account: str) -> frozenset:
        return frozenset(self._table.get(account, set()))

    def accounts_with(self, cap: Capability) -> Iterable[str]:
        return sorted(a for a, caps in self._table.items() if cap in caps)
