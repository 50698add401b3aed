"""Identity models — verified-identity records and compliance state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, Optional


@dataclass
class IdentityRecord:
    """An account's link to a verified identity.

    Mutable only through the directory: jurisdiction updates rewrite
    ``jurisdiction_code`` in place. Callers receive copies.
    """
    account: str
    identity_handle: str
    jurisdiction_code: int
    registered_utc: Optional[datetime] = None

    @property
    def is_verified(self) -> bool:
        return bool(self.identity_handle)


@dataclass(frozen=True)
class ComplianceSnapshot:
    """Read-only copy of the compliance gate's state.

    Invariant: holder_count == len(holders), and holder_count <= holder_cap
    whenever holder_cap > 0.
    """
    blacklist: FrozenSet[str]
    restricted_jurisdictions: FrozenSet[int]
    holders: FrozenSet[str]
    holder_count: int
    holder_cap: int
    max_balance_per_investor: int


@dataclass(frozen=True)
class TransferDecision:
    """Outcome of a compliance check.

    ``reason`` is empty when allowed, otherwise a stable reason code.
    """
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed
