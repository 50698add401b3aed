"""Lease escrow — lifecycle, deposit custody and rent accounting for leases.

A landlord who holds the asset token opens a lease for a tenant. The
tenant's security deposit is held in the escrow's custody account on the
payment token; rent goes straight from tenant to landlord. When the
lease ends the landlord splits the deposit between tenant (refund) and
landlord (compensation); the two payouts always sum to the deposit paid.

State machine:
    PENDING → ACTIVE        (tenant pays the security deposit)
    PENDING → CANCELLED     (landlord withdraws before the deposit)
    ACTIVE → TERMINATED     (landlord or tenant ends the lease)
    ACTIVE → EXPIRED        (mark_expired sweep after end_utc)

Payment ordering: each operation that moves payment units applies its
own state change first and then calls the payment token, so a reentrant
call sees the post-transition state. If the payment call fails the
staged change is rolled back and the error propagates.

Expiry has no internal scheduler. An external trigger must call
``mark_expired``; until then an expired lease stays ACTIVE.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional, Protocol, Tuple

from tenure.errors import (
    AlreadyReturned,
    AuthorizationError,
    DuplicatePayment,
    InsufficientBalance,
    InvalidArgument,
    InvalidStateTransition,
    NotFound,
)
from tenure.ledger.asset_token import validate_amount
from tenure.ledger.payment_token import PaymentToken
from tenure.models.lease import (
    DEPOSIT_SETTLEMENT_STATUSES,
    LeaseAgreement,
    LeaseStatus,
    RentPaymentRecord,
)
from tenure.persistence.event_log import EventKind, EventLog

logger = logging.getLogger(__name__)

DEFAULT_ESCROW_ACCOUNT = "lease-escrow"


class AssetHoldings(Protocol):
    """What the escrow needs from an asset ledger: identity and balances."""

    @property
    def account(self) -> str: ...

    def balance_of(self, account: str) -> int: ...


class LeaseEscrow:
    """Manages lease agreements and their payment-token escrow.

    Usage:
        escrow = LeaseEscrow(usdc, ledgers=[ledger])
        lease = escrow.create_lease("landlord", "tenant", ledger.account,
                                    1000, 2000, start, end, "12 High St")
        escrow.pay_security_deposit("tenant", lease.lease_id)
        escrow.pay_rent("tenant", lease.lease_id, 1, 2025)
    """

    def __init__(
        self,
        payment_token: PaymentToken,
        ledgers: Iterable[AssetHoldings] = (),
        escrow_account: str = DEFAULT_ESCROW_ACCOUNT,
        events: Optional[EventLog] = None,
        amount_bits: int = 256,
    ) -> None:
        if not escrow_account:
            raise InvalidArgument("Escrow account must be non-empty")
        self._payment_token = payment_token
        self._escrow_account = escrow_account
        self._events = events
        self._amount_bits = amount_bits
        self._ledgers: Dict[str, AssetHoldings] = {}
        for ledger in ledgers:
            self.register_asset_ledger(ledger)

        self._leases: Dict[int, LeaseAgreement] = {}
        self._payments: Dict[int, List[RentPaymentRecord]] = {}
        self._landlord_leases: Dict[str, List[int]] = {}
        self._tenant_leases: Dict[str, List[int]] = {}
        self._counter = 0

    @property
    def escrow_account(self) -> str:
        """Custody account on the payment token holding deposits."""
        return self._escrow_account

    def register_asset_ledger(self, ledger: AssetHoldings) -> None:
        self._ledgers[ledger.account] = ledger

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_lease(
        self,
        caller: str,
        tenant: str,
        asset_token_ref: str,
        monthly_rent: int,
        security_deposit: int,
        start_utc: datetime,
        end_utc: datetime,
        property_descriptor: str,
        terms: str = "",
        now: Optional[datetime] = None,
    ) -> LeaseAgreement:
        """Open a PENDING lease with the caller as landlord.

        Returns:
            The created LeaseAgreement with a fresh monotonic lease_id.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        if not caller or not tenant:
            raise InvalidArgument("Landlord and tenant must be non-empty")
        if tenant == caller:
            raise InvalidArgument("Landlord cannot lease to themselves")
        validate_amount(monthly_rent, self._amount_bits)
        validate_amount(security_deposit, self._amount_bits)
        if start_utc <= now:
            raise InvalidArgument("Lease start must be in the future")
        if end_utc <= start_utc:
            raise InvalidArgument("Lease end must be after start")
        if not property_descriptor:
            raise InvalidArgument("Property descriptor must be non-empty")

        ledger = self._ledgers.get(asset_token_ref)
        if ledger is None:
            raise NotFound(f"Unknown asset token: {asset_token_ref}")
        if ledger.balance_of(caller) <= 0:
            raise AuthorizationError(
                f"Landlord {caller} holds no {asset_token_ref} tokens"
            )

        self._counter += 1
        lease = LeaseAgreement(
            lease_id=self._counter,
            landlord=caller,
            tenant=tenant,
            asset_token_ref=asset_token_ref,
            monthly_rent=monthly_rent,
            security_deposit=security_deposit,
            start_utc=start_utc,
            end_utc=end_utc,
            property_descriptor=property_descriptor,
            terms=terms,
            created_utc=now,
        )
        self._leases[lease.lease_id] = lease
        self._payments[lease.lease_id] = []
        self._landlord_leases.setdefault(caller, []).append(lease.lease_id)
        self._tenant_leases.setdefault(tenant, []).append(lease.lease_id)
        self._emit(EventKind.LEASE_CREATED, caller, lease, monthly_rent, {
            "tenant": tenant,
            "asset_token_ref": asset_token_ref,
            "security_deposit": security_deposit,
        }, now)
        return replace(lease)

    def pay_security_deposit(
        self,
        caller: str,
        lease_id: int,
        now: Optional[datetime] = None,
    ) -> LeaseAgreement:
        """Tenant funds the deposit into escrow custody.

        Transitions: PENDING → ACTIVE
        """
        lease = self._get(lease_id)
        self._require_tenant(caller, lease)
        if lease.status != LeaseStatus.PENDING:
            raise InvalidStateTransition(
                f"Lease {lease_id} is {lease.status.value}; deposit requires pending"
            )
        if lease.deposit_paid_amount != 0:
            raise InvalidStateTransition(f"Deposit already paid for lease {lease_id}")

        with self._staged(lease):
            lease.deposit_paid_amount = lease.security_deposit
            lease.transition_to(LeaseStatus.ACTIVE)
            self._payment_token.transfer_from(
                self._escrow_account, lease.tenant, self._escrow_account,
                lease.security_deposit, now=now,
            )
        self._emit(EventKind.DEPOSIT_PAID, caller, lease, lease.security_deposit, {}, now)
        return replace(lease)

    def pay_rent(
        self,
        caller: str,
        lease_id: int,
        month: int,
        year: int,
        now: Optional[datetime] = None,
    ) -> RentPaymentRecord:
        """Tenant pays one month's rent directly to the landlord.

        At most one payment per (lease, month, year).
        """
        if now is None:
            now = datetime.now(timezone.utc)
        lease = self._get(lease_id)
        self._require_tenant(caller, lease)
        if lease.status != LeaseStatus.ACTIVE:
            raise InvalidStateTransition(
                f"Lease {lease_id} is {lease.status.value}; rent requires active"
            )
        if not 1 <= month <= 12:
            raise InvalidArgument(f"Month must be in [1, 12], got {month}")
        if year <= 0:
            raise InvalidArgument(f"Year must be positive, got {year}")
        if any(p.period == (month, year) for p in self._payments[lease_id]):
            raise DuplicatePayment(
                f"Rent for {month:02d}/{year} already paid on lease {lease_id}"
            )

        record = RentPaymentRecord(
            lease_id=lease_id,
            payer=caller,
            amount=lease.monthly_rent,
            timestamp_utc=now,
            month=month,
            year=year,
        )
        with self._staged(lease):
            self._payments[lease_id].append(record)
            lease.total_rent_paid += lease.monthly_rent
            lease.last_payment_utc = now
            self._payment_token.transfer_from(
                self._escrow_account, lease.tenant, lease.landlord,
                lease.monthly_rent, now=now,
            )
        self._emit(EventKind.RENT_PAID, caller, lease, lease.monthly_rent, {
            "month": month,
            "year": year,
        }, now)
        return record

    def terminate_lease(
        self,
        caller: str,
        lease_id: int,
        now: Optional[datetime] = None,
    ) -> LeaseAgreement:
        """Transitions: ACTIVE → TERMINATED"""
        lease = self._get(lease_id)
        if caller not in (lease.landlord, lease.tenant):
            raise AuthorizationError(f"Only the parties may terminate lease {lease_id}")
        lease.transition_to(LeaseStatus.TERMINATED)
        self._emit(EventKind.LEASE_TERMINATED, caller, lease, None, {}, now)
        return replace(lease)

    def return_security_deposit(
        self,
        caller: str,
        lease_id: int,
        return_amount: int,
        now: Optional[datetime] = None,
    ) -> Tuple[int, int]:
        """Settle the deposit once the lease has ended.

        ``return_amount`` goes back to the tenant; the remainder goes to
        the landlord as compensation.

        Returns:
            Tuple of (tenant payout, landlord payout).
        """
        lease = self._get(lease_id)
        self._require_landlord(caller, lease)
        if lease.status not in DEPOSIT_SETTLEMENT_STATUSES:
            raise InvalidStateTransition(
                f"Lease {lease_id} is {lease.status.value}; "
                f"deposit can be returned only once terminated or expired"
            )
        if lease.deposit_returned:
            raise AlreadyReturned(f"Deposit for lease {lease_id} already returned")
        validate_amount(return_amount, self._amount_bits, allow_zero=True)
        if return_amount > lease.deposit_paid_amount:
            raise InvalidArgument(
                f"Return amount {return_amount} exceeds deposit paid "
                f"{lease.deposit_paid_amount}"
            )

        tenant_payout = return_amount
        landlord_payout = lease.deposit_paid_amount - return_amount
        # Both payouts must be fundable before either one moves.
        held = self._payment_token.balance_of(self._escrow_account)
        if held < lease.deposit_paid_amount:
            raise InsufficientBalance(
                f"Escrow holds {held}; lease {lease_id} needs {lease.deposit_paid_amount}"
            )
        with self._staged(lease):
            lease.deposit_returned = True
            if tenant_payout:
                self._payment_token.transfer(
                    self._escrow_account, lease.tenant, tenant_payout, now=now,
                )
            if landlord_payout:
                self._payment_token.transfer(
                    self._escrow_account, lease.landlord, landlord_payout, now=now,
                )
        self._emit(EventKind.DEPOSIT_RETURNED, caller, lease, lease.deposit_paid_amount, {
            "tenant_payout": tenant_payout,
            "landlord_payout": landlord_payout,
        }, now)
        return tenant_payout, landlord_payout

    def cancel_lease(
        self,
        caller: str,
        lease_id: int,
        now: Optional[datetime] = None,
    ) -> LeaseAgreement:
        """Transitions: PENDING → CANCELLED"""
        lease = self._get(lease_id)
        self._require_landlord(caller, lease)
        lease.transition_to(LeaseStatus.CANCELLED)
        self._emit(EventKind.LEASE_CANCELLED, caller, lease, None, {}, now)
        return replace(lease)

    def mark_expired(
        self,
        lease_ids: Iterable[int],
        now: Optional[datetime] = None,
        caller: str = "",
    ) -> List[int]:
        """Sweep: expire every listed ACTIVE lease whose end has passed.

        Callable by anyone, idempotent. Unknown ids and leases in any other
        status are skipped.

        Returns:
            The ids transitioned to EXPIRED by this call.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        expired: List[int] = []
        for lease_id in lease_ids:
            lease = self._leases.get(lease_id)
            if lease is None or lease.status != LeaseStatus.ACTIVE:
                continue
            if now > lease.end_utc:
                lease.transition_to(LeaseStatus.EXPIRED)
                self._emit(EventKind.LEASE_EXPIRED, caller, lease, None, {}, now)
                expired.append(lease_id)
        if expired:
            logger.info("Expired %d lease(s): %s", len(expired), expired)
        return expired

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_lease(self, lease_id: int) -> LeaseAgreement:
        """A detached copy; changing it does not touch the stored lease."""
        return replace(self._get(lease_id))

    def get_rent_payments(self, lease_id: int) -> List[RentPaymentRecord]:
        self._get(lease_id)
        return list(self._payments[lease_id])

    def get_landlord_leases(self, landlord: str) -> List[int]:
        return list(self._landlord_leases.get(landlord, []))

    def get_tenant_leases(self, tenant: str) -> List[int]:
        return list(self._tenant_leases.get(tenant, []))

    def is_lease_expired(self, lease_id: int, now: Optional[datetime] = None) -> bool:
        """Time-based view: true once end_utc has passed, swept or not."""
        if now is None:
            now = datetime.now(timezone.utc)
        return now > self._get(lease_id).end_utc

    def active_lease_ids(self) -> List[int]:
        return [i for i, lease in self._leases.items() if lease.status == LeaseStatus.ACTIVE]

    @property
    def lease_count(self) -> int:
        return self._counter

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get(self, lease_id: int) -> LeaseAgreement:
        lease = self._leases.get(lease_id)
        if lease is None:
            raise NotFound(f"Unknown lease ID: {lease_id}")
        return lease

    @staticmethod
    def _require_tenant(caller: str, lease: LeaseAgreement) -> None:
        if caller != lease.tenant:
            raise AuthorizationError(f"Only the tenant may do this on lease {lease.lease_id}")

    @staticmethod
    def _require_landlord(caller: str, lease: LeaseAgreement) -> None:
        if caller != lease.landlord:
            raise AuthorizationError(f"Only the landlord may do this on lease {lease.lease_id}")

    @contextmanager
    def _staged(self, lease: LeaseAgreement) -> Iterator[None]:
        """Undo the lease's staged changes if the payment call fails."""
        snapshot = dict(vars(lease))
        payments = self._payments[lease.lease_id]
        payment_count = len(payments)
        try:
            yield
        except Exception:
            vars(lease).update(snapshot)
            del payments[payment_count:]
            raise

    def _emit(
        self,
        kind: EventKind,
        actor: str,
        lease: LeaseAgreement,
        amount: Optional[int],
        payload: dict,
        now: Optional[datetime],
    ) -> None:
        if self._events is not None:
            payload = dict(payload, status=lease.status.value)
            self._events.record(
                kind, actor, f"lease:{lease.lease_id}",
                amount=amount, payload=payload, now=now,
            )
