"""Lease models — agreements, rent payments, and the lease state machine.

Invariants enforced by these models:
- Lease lifecycle is a strict one-way state machine (no path back to PENDING)
- Terminal leases are permanent archival records
- At most one rent payment per (lease, month, year)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from tenure.errors import InvalidStateTransition


class LeaseStatus(str, enum.Enum):
    """Lifecycle state of a lease agreement.

    State machine:
        PENDING → ACTIVE → TERMINATED
        PENDING → ACTIVE → EXPIRED
        PENDING → CANCELLED
    """
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    TERMINATED = "terminated"
    CANCELLED = "cancelled"


LEASE_TRANSITIONS: Dict[LeaseStatus, frozenset] = {
    LeaseStatus.PENDING: frozenset({LeaseStatus.ACTIVE, LeaseStatus.CANCELLED}),
    LeaseStatus.ACTIVE: frozenset({LeaseStatus.TERMINATED, LeaseStatus.EXPIRED}),
    LeaseStatus.EXPIRED: frozenset(),
    LeaseStatus.TERMINATED: frozenset(),
    LeaseStatus.CANCELLED: frozenset(),
}

# Statuses from which the security deposit may be settled.
DEPOSIT_SETTLEMENT_STATUSES = frozenset({LeaseStatus.TERMINATED, LeaseStatus.EXPIRED})


@dataclass
class LeaseAgreement:
    """A time-boxed rental agreement between landlord and tenant.

    Mutable: lifecycle methods on the escrow update status and the
    deposit/rent accounting fields. All status changes go through
    ``transition_to``. The escrow only ever hands out copies.
    """
    lease_id: int
    landlord: str
    tenant: str
    asset_token_ref: str
    monthly_rent: int
    security_deposit: int
    start_utc: datetime
    end_utc: datetime
    property_descriptor: str
    terms: str = ""
    status: LeaseStatus = LeaseStatus.PENDING
    deposit_paid_amount: int = 0
    deposit_returned: bool = False
    last_payment_utc: Optional[datetime] = None
    total_rent_paid: int = 0
    created_utc: Optional[datetime] = None

    def transition_to(self, new_status: LeaseStatus) -> None:
        """Transition to a new status, validating the transition is legal."""
        allowed = LEASE_TRANSITIONS.get(self.status, frozenset())
        if new_status not in allowed:
            allowed_str = ", ".join(sorted(s.value for s in allowed)) or "none"
            raise InvalidStateTransition(
                f"Invalid lease transition: {self.status.value} → {new_status.value}. "
                f"Allowed: {allowed_str}"
            )
        self.status = new_status

    @property
    def is_terminal(self) -> bool:
        return not LEASE_TRANSITIONS[self.status]


@dataclass(frozen=True)
class RentPaymentRecord:
    """One month's rent, paid directly from tenant to landlord."""
    lease_id: int
    payer: str
    amount: int
    timestamp_utc: datetime
    month: int
    year: int

    @property
    def period(self) -> tuple:
        return (self.month, self.year)
