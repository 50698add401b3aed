"""Compliance gate — the single authorization decision for ledger mutations.

The gate answers one question: "May ``amount`` move from ``from_account``
to ``to_account`` right now?" Checks run in a fixed order and
short-circuit on the first failure:

1. The recipient must be a real account and the amount positive.
2. Mint (sender is MINT_SENTINEL): only the recipient is checked (not
   blacklisted, verified, jurisdiction not restricted, capacity).
3. Regular transfer: both parties not blacklisted, both verified,
   neither jurisdiction restricted, capacity for the recipient.

Capacity covers the holder cap (a new holder needs a free slot) and the
per-investor maximum balance (the recipient's prospective balance). Any
account with a nonzero balance counts as an existing holder.

The gate exclusively owns its state. Only compliance officers mutate the
restriction sets; only an account holding the TOKEN capability (the
ledger) reports holder-set changes through ``update_holder_count``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Protocol, Set

from tenure.capabilities import Capability, CapabilityTable
from tenure.errors import AlreadyInState, CapExceeded, InvalidArgument, NotFound
from tenure.identity.directory import IdentityDirectory
from tenure.models.identity import ComplianceSnapshot, TransferDecision
from tenure.persistence.event_log import EventKind, EventLog


ZERO_ACCOUNT = ""
# The reserved "no sender" value: a transfer from here is issuance.
MINT_SENTINEL = ZERO_ACCOUNT

# Reason codes
INVALID_RECIPIENT = "invalid_recipient"
INVALID_AMOUNT = "invalid_amount"
SENDER_BLACKLISTED = "sender_blacklisted"
RECIPIENT_BLACKLISTED = "recipient_blacklisted"
SENDER_NOT_VERIFIED = "sender_not_verified"
RECIPIENT_NOT_VERIFIED = "recipient_not_verified"
SENDER_JURISDICTION_RESTRICTED = "sender_jurisdiction_restricted"
RECIPIENT_JURISDICTION_RESTRICTED = "recipient_jurisdiction_restricted"
HOLDER_CAP_REACHED = "holder_cap_reached"
MAX_BALANCE_EXCEEDED = "max_balance_exceeded"

_ALLOW = TransferDecision(allowed=True)


class BalanceReader(Protocol):
    def balance_of(self, account: str) -> int: ...


class ComplianceGate:
    """Multi-factor transfer authorization over the identity directory.

    Usage:
        gate = ComplianceGate(directory, capabilities, events)
        gate.bind_ledger(ledger)
        gate.can_transfer("alice", "bob", 100)
    """

    def __init__(
        self,
        directory: IdentityDirectory,
        capabilities: CapabilityTable,
        events: Optional[EventLog] = None,
        holder_cap: int = 0,
        max_balance_per_investor: int = 0,
        restricted_jurisdictions: Iterable[int] = (),
    ) -> None:
        if holder_cap < 0 or max_balance_per_investor < 0:
            raise InvalidArgument("Caps must be non-negative")
        self._directory = directory
        self._capabilities = capabilities
        self._events = events
        self._ledger: Optional[BalanceReader] = None

        self._blacklist: Set[str] = set()
        self._restricted_jurisdictions: Set[int] = set(restricted_jurisdictions)
        self._holders: Set[str] = set()
        self._holder_cap = holder_cap
        self._max_balance_per_investor = max_balance_per_investor

    def bind_ledger(self, ledger: BalanceReader) -> None:
        """One-time wiring of the read-only balance reader."""
        if self._ledger is ledger:
            return
        if self._ledger is not None:
            raise AlreadyInState("Compliance gate is already bound to a ledger")
        self._ledger = ledger

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def check_transfer(
        self,
        from_account: str,
        to_account: str,
        amount: int,
    ) -> TransferDecision:
        """Evaluate a prospective transfer and say why it is denied."""
        if not to_account or to_account == MINT_SENTINEL:
            return TransferDecision(False, INVALID_RECIPIENT)
        if amount <= 0:
            return TransferDecision(False, INVALID_AMOUNT)

        if from_account == MINT_SENTINEL:
            if to_account in self._blacklist:
                return TransferDecision(False, RECIPIENT_BLACKLISTED)
            if not self._directory.is_verified(to_account):
                return TransferDecision(False, RECIPIENT_NOT_VERIFIED)
            if self._jurisdiction_restricted(to_account):
                return TransferDecision(False, RECIPIENT_JURISDICTION_RESTRICTED)
            return self._check_capacity(from_account, to_account, amount)

        if from_account in self._blacklist:
            return TransferDecision(False, SENDER_BLACKLISTED)
        if to_account in self._blacklist:
            return TransferDecision(False, RECIPIENT_BLACKLISTED)
        if not self._directory.is_verified(from_account):
            return TransferDecision(False, SENDER_NOT_VERIFIED)
        if not self._directory.is_verified(to_account):
            return TransferDecision(False, RECIPIENT_NOT_VERIFIED)
        if self._jurisdiction_restricted(from_account):
            return TransferDecision(False, SENDER_JURISDICTION_RESTRICTED)
        if self._jurisdiction_restricted(to_account):
            return TransferDecision(False, RECIPIENT_JURISDICTION_RESTRICTED)
        return self._check_capacity(from_account, to_account, amount)

    def can_transfer(self, from_account: str, to_account: str, amount: int) -> bool:
        return self.check_transfer(from_account, to_account, amount).allowed

    def _jurisdiction_restricted(self, account: str) -> bool:
        return self._directory.investor_jurisdiction(account) in self._restricted_jurisdictions

    def _balance(self, account: str) -> int:
        return self._ledger.balance_of(account) if self._ledger is not None else 0

    def holds_balance(self, account: str) -> bool:
        """True for tracked holders and for any account with a nonzero balance.

        The balance check covers accounts a failed holder sync left untracked.
        """
        return account in self._holders or self._balance(account) > 0

    def _check_capacity(self, from_account: str, to_account: str, amount: int) -> TransferDecision:
        if (
            not self.holds_balance(to_account)
            and self._holder_cap > 0
            and len(self._holders) >= self._holder_cap
        ):
            return TransferDecision(False, HOLDER_CAP_REACHED)
        if self._max_balance_per_investor > 0:
            # A self-transfer leaves the balance unchanged.
            incoming = 0 if from_account == to_account else amount
            if self._balance(to_account) + incoming > self._max_balance_per_investor:
                return TransferDecision(False, MAX_BALANCE_EXCEEDED)
        return _ALLOW

    # ------------------------------------------------------------------
    # Holder bookkeeping (ledger callback)
    # ------------------------------------------------------------------

    def update_holder_count(
        self,
        caller: str,
        from_account: str,
        to_account: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> None:
        """Reconcile the holder set after a committed mutation.

        Called by the ledger; failures here must not undo the mutation,
        so the ledger wraps this call.
        """
        self._capabilities.require_capability(caller, Capability.TOKEN)
        if amount <= 0:
            return
        if self._ledger is None:
            raise NotFound("No ledger bound to compliance gate")

        # Release the sender's slot before claiming one for the recipient.
        if (
            from_account != MINT_SENTINEL
            and from_account in self._holders
            and self._ledger.balance_of(from_account) == 0
        ):
            self._holders.discard(from_account)
            self._emit(EventKind.HOLDER_REMOVED, caller, from_account, None, now)

        if to_account != ZERO_ACCOUNT and to_account not in self._holders:
            if self._holder_cap > 0 and len(self._holders) >= self._holder_cap:
                raise CapExceeded(
                    f"Holder cap {self._holder_cap} reached; cannot track {to_account}"
                )
            self._holders.add(to_account)
            self._emit(EventKind.HOLDER_ADDED, caller, to_account, None, now)

    # ------------------------------------------------------------------
    # Administration (compliance officer)
    # ------------------------------------------------------------------

    def add_to_blacklist(self, caller: str, account: str, now: Optional[datetime] = None) -> None:
        self._capabilities.require_capability(caller, Capability.COMPLIANCE_OFFICER)
        if not account:
            raise InvalidArgument("Account must be non-empty")
        if account in self._blacklist:
            raise AlreadyInState(f"Account already blacklisted: {account}")
        self._blacklist.add(account)
        self._emit(EventKind.BLACKLIST_ADDED, caller, account, None, now)

    def remove_from_blacklist(self, caller: str, account: str, now: Optional[datetime] = None) -> None:
        self._capabilities.require_capability(caller, Capability.COMPLIANCE_OFFICER)
        if account not in self._blacklist:
            raise AlreadyInState(f"Account not blacklisted: {account}")
        self._blacklist.discard(account)
        self._emit(EventKind.BLACKLIST_REMOVED, caller, account, None, now)

    def add_restricted_jurisdiction(self, caller: str, code: int, now: Optional[datetime] = None) -> None:
        self._capabilities.require_capability(caller, Capability.COMPLIANCE_OFFICER)
        if not code:
            raise InvalidArgument("Jurisdiction code must be nonzero")
        if code in self._restricted_jurisdictions:
            raise AlreadyInState(f"Jurisdiction already restricted: {code}")
        self._restricted_jurisdictions.add(code)
        self._emit(EventKind.JURISDICTION_RESTRICTED, caller, str(code), None, now)

    def remove_restricted_jurisdiction(self, caller: str, code: int, now: Optional[datetime] = None) -> None:
        self._capabilities.require_capability(caller, Capability.COMPLIANCE_OFFICER)
        if code not in self._restricted_jurisdictions:
            raise AlreadyInState(f"Jurisdiction not restricted: {code}")
        self._restricted_jurisdictions.discard(code)
        self._emit(EventKind.JURISDICTION_UNRESTRICTED, caller, str(code), None, now)

    def set_holder_cap(self, caller: str, cap: int, now: Optional[datetime] = None) -> None:
        """Set the maximum number of distinct holders (0 = unlimited)."""
        self._capabilities.require_capability(caller, Capability.COMPLIANCE_OFFICER)
        if cap < 0:
            raise InvalidArgument("Holder cap must be non-negative")
        if cap == self._holder_cap:
            raise AlreadyInState(f"Holder cap already {cap}")
        if 0 < cap < len(self._holders):
            raise CapExceeded(
                f"Holder cap {cap} is below the current holder count {len(self._holders)}"
            )
        self._holder_cap = cap
        self._emit(EventKind.HOLDER_CAP_SET, caller, "", cap, now)

    def set_max_balance_per_investor(self, caller: str, limit: int, now: Optional[datetime] = None) -> None:
        """Set the per-investor balance ceiling (0 = unlimited)."""
        self._capabilities.require_capability(caller, Capability.COMPLIANCE_OFFICER)
        if limit < 0:
            raise InvalidArgument("Max balance must be non-negative")
        if limit == self._max_balance_per_investor:
            raise AlreadyInState(f"Max balance per investor already {limit}")
        self._max_balance_per_investor = limit
        self._emit(EventKind.MAX_BALANCE_SET, caller, "", limit, now)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_blacklisted(self, account: str) -> bool:
        return account in self._blacklist

    def is_jurisdiction_restricted(self, code: int) -> bool:
        return code in self._restricted_jurisdictions

    def is_holder(self, account: str) -> bool:
        return account in self._holders

    @property
    def holder_count(self) -> int:
        return len(self._holders)

    @property
    def holder_cap(self) -> int:
        return self._holder_cap

    @property
    def max_balance_per_investor(self) -> int:
        return self._max_balance_per_investor

    def state(self) -> ComplianceSnapshot:
        return ComplianceSnapshot(
            blacklist=frozenset(self._blacklist),
            restricted_jurisdictions=frozenset(self._restricted_jurisdictions),
            holders=frozenset(self._holders),
            holder_count=len(self._holders),
            holder_cap=self._holder_cap,
            max_balance_per_investor=self._max_balance_per_investor,
        )

    def _emit(
        self,
        kind: EventKind,
        actor: str,
        subject: str,
        amount: Optional[int],
        now: Optional[datetime],
    ) -> None:
        if self._events is not None:
            self._events.record(kind, actor, subject, amount=amount, now=now)
