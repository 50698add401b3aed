"""Permissioned ledger — balances of the tokenized asset.

Every mint and transfer first obtains an affirmative decision from the
compliance gate. Each operation validates everything before touching a
balance, so a failed call leaves no partial state.

Invariants preserved across every operation:
- total_supply == sum of all balances
- no balance is ever negative
- total_supply <= issuance cap (asset total_shares in smallest units)

After each committed mutation the ledger reports holder changes to the
gate. That report is best-effort: a failure is logged and recorded as a
HOLDER_SYNC_FAILED audit event, and never undoes the mutation.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from tenure.capabilities import Capability, CapabilityTable
from tenure.compliance.gate import (
    HOLDER_CAP_REACHED,
    MINT_SENTINEL,
    ZERO_ACCOUNT,
    ComplianceGate,
)
from tenure.errors import (
    CapExceeded,
    ComplianceViolation,
    InsufficientBalance,
    InvalidArgument,
)
from tenure.identity.directory import IdentityDirectory
from tenure.models.asset import AssetRecord, TokenMetadata
from tenure.persistence.event_log import EventKind, EventLog

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100


def validate_amount(amount: int, amount_bits: int, allow_zero: bool = False) -> None:
    """Reject non-integers, non-positive values and values wider than the field."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidArgument(f"Amount must be an integer, got {type(amount).__name__}")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidArgument(f"Amount must be positive, got {amount}")
    if amount >= 2 ** amount_bits:
        raise InvalidArgument(f"Amount {amount} exceeds {amount_bits}-bit field width")


class PermissionedLedger:
    """Compliance-gated balance table for one asset token.

    Usage:
        ledger = PermissionedLedger("LPT", metadata, asset, directory, gate, caps)
        gate.bind_ledger(ledger)
        ledger.mint("agent", "alice", 100 * metadata.unit)
        ledger.transfer("alice", "bob", 40 * metadata.unit)
    """

    def __init__(
        self,
        account: str,
        metadata: TokenMetadata,
        asset: AssetRecord,
        directory: IdentityDirectory,
        gate: ComplianceGate,
        capabilities: CapabilityTable,
        events: Optional[EventLog] = None,
        amount_bits: int = 256,
        max_batch_size: int = MAX_BATCH_SIZE,
    ) -> None:
        if not account:
            raise InvalidArgument("Ledger account must be non-empty")
        if not 1 <= max_batch_size <= MAX_BATCH_SIZE:
            raise InvalidArgument(f"Batch size must be in [1, {MAX_BATCH_SIZE}]")
        self._check_asset(asset)
        self._account = account
        self._metadata = metadata
        self._asset = asset
        self._directory = directory
        self._gate = gate
        self._capabilities = capabilities
        self._events = events
        self._amount_bits = amount_bits
        self._max_batch_size = max_batch_size

        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        self._total_supply = 0

    @property
    def account(self) -> str:
        """The ledger's own account; also its asset token reference."""
        return self._account

    @property
    def metadata(self) -> TokenMetadata:
        return self._metadata

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def mint(
        self,
        caller: str,
        to_account: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> None:
        self._capabilities.require_capability(caller, Capability.AGENT)
        validate_amount(amount, self._amount_bits)
        self._require_compliant(MINT_SENTINEL, to_account, amount)
        if self._total_supply + amount > self.issuance_cap:
            raise CapExceeded(
                f"Minting {amount} would exceed issuance cap {self.issuance_cap} "
                f"(total supply {self._total_supply})"
            )

        self._balances[to_account] = self.balance_of(to_account) + amount
        self._total_supply += amount
        self._emit(EventKind.MINTED, caller, to_account, amount, {}, now)
        self._notify_holders(MINT_SENTINEL, to_account, amount, now)

    def burn(
        self,
        caller: str,
        from_account: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> None:
        self._capabilities.require_capability(caller, Capability.AGENT)
        validate_amount(amount, self._amount_bits)
        self._require_balance(from_account, amount)

        self._balances[from_account] -= amount
        self._total_supply -= amount
        self._emit(EventKind.BURNED, caller, from_account, amount, {}, now)
        self._notify_holders(from_account, ZERO_ACCOUNT, amount, now)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def transfer(
        self,
        caller: str,
        to_account: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> None:
        """Move ``amount`` from the caller's balance to ``to_account``."""
        if not caller:
            raise InvalidArgument("Sender must be non-empty")
        validate_amount(amount, self._amount_bits)
        self._require_compliant(caller, to_account, amount)
        self._require_balance(caller, amount)
        self._move(caller, to_account, amount)
        self._emit(EventKind.TRANSFERRED, caller, to_account, amount, {"from": caller}, now)
        self._notify_holders(caller, to_account, amount, now)

    def approve(
        self,
        owner: str,
        spender: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> None:
        """Set the spender's allowance over the owner's balance (0 revokes)."""
        if not owner or not spender:
            raise InvalidArgument("Owner and spender must be non-empty")
        validate_amount(amount, self._amount_bits, allow_zero=True)
        self._allowances[(owner, spender)] = amount
        self._emit(EventKind.APPROVAL_SET, owner, spender, amount, {}, now)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def transfer_from(
        self,
        spender: str,
        from_account: str,
        to_account: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> None:
        """Move tokens on the owner's behalf, consuming the spender's allowance."""
        if not from_account or not spender:
            raise InvalidArgument("Owner and spender must be non-empty")
        validate_amount(amount, self._amount_bits)
        self._require_compliant(from_account, to_account, amount)
        self._require_balance(from_account, amount)
        allowed = self.allowance(from_account, spender)
        if allowed < amount:
            raise InsufficientBalance(
                f"Allowance {allowed} for {spender} over {from_account} is below {amount}"
            )

        self._allowances[(from_account, spender)] = allowed - amount
        self._move(from_account, to_account, amount)
        self._emit(EventKind.TRANSFERRED, spender, to_account, amount, {
            "from": from_account,
            "spender": spender,
        }, now)
        self._notify_holders(from_account, to_account, amount, now)

    def forced_transfer(
        self,
        caller: str,
        from_account: str,
        to_account: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> None:
        """Administrative override for regulatory remediation.

        Bypasses the compliance gate entirely. Balance and amount checks
        still apply.
        """
        self._capabilities.require_capability(caller, Capability.COMPLIANCE_OFFICER)
        if not from_account or not to_account:
            raise InvalidArgument("Forced transfer needs real source and destination accounts")
        validate_amount(amount, self._amount_bits)
        self._require_balance(from_account, amount)

        self._move(from_account, to_account, amount)
        self._emit(EventKind.FORCED_TRANSFER, caller, to_account, amount, {
            "from": from_account,
        }, now)
        self._notify_holders(from_account, to_account, amount, now)

    def batch_transfer(
        self,
        caller: str,
        recipients: Sequence[str],
        amounts: Sequence[int],
        now: Optional[datetime] = None,
    ) -> None:
        """Transfer from the caller to many recipients, all or nothing.

        Every pair is compliance-checked against the balances and holder
        set the batch would produce up to that pair.
        """
        if len(recipients) != len(amounts):
            raise InvalidArgument(
                f"Recipients ({len(recipients)}) and amounts ({len(amounts)}) differ in length"
            )
        if not recipients:
            raise InvalidArgument("Batch must contain at least one transfer")
        if len(recipients) > self._max_batch_size:
            raise InvalidArgument(
                f"Batch of {len(recipients)} exceeds maximum size {self._max_batch_size}"
            )

        pairs: List[Tuple[str, int]] = list(zip(recipients, amounts))
        received: Dict[str, int] = {}
        new_holders: set = set()
        remaining = self.balance_of(caller)
        for index, (to_account, amount) in enumerate(pairs):
            validate_amount(amount, self._amount_bits)
            # Units the caller sends to itself never raise its balance.
            cumulative = amount if to_account == caller else received.get(to_account, 0) + amount
            self._require_compliant(caller, to_account, cumulative, index=index)
            if not self._gate.holds_balance(to_account) and to_account not in new_holders:
                cap = self._gate.holder_cap
                if cap > 0 and self._gate.holder_count + len(new_holders) >= cap:
                    raise ComplianceViolation(
                        f"Batch transfer {index} to {to_account} denied: {HOLDER_CAP_REACHED}",
                        reason=HOLDER_CAP_REACHED,
                    )
                new_holders.add(to_account)
            if remaining < amount:
                raise InsufficientBalance(
                    f"Batch transfer {index}: balance {remaining} of {caller} is below {amount}"
                )
            remaining -= amount
            if to_account != caller:
                received[to_account] = cumulative

        for to_account, amount in pairs:
            self._move(caller, to_account, amount)
            self._emit(EventKind.TRANSFERRED, caller, to_account, amount, {
                "from": caller,
                "batch": True,
            }, now)
        self._emit(EventKind.BATCH_TRANSFERRED, caller, caller, sum(amounts), {
            "transfers": len(pairs),
        }, now)
        for to_account, amount in pairs:
            self._notify_holders(caller, to_account, amount, now)

    # ------------------------------------------------------------------
    # Asset record
    # ------------------------------------------------------------------

    def update_asset_record(
        self,
        caller: str,
        asset: AssetRecord,
        now: Optional[datetime] = None,
    ) -> None:
        self._capabilities.require_capability(caller, Capability.ADMIN)
        self._check_asset(asset)
        new_cap = asset.total_shares * self._metadata.unit
        if new_cap < self._total_supply:
            raise CapExceeded(
                f"New issuance cap {new_cap} is below current total supply {self._total_supply}"
            )
        self._asset = asset
        self._emit(EventKind.ASSET_RECORD_UPDATED, caller, self._account, None, {
            "property_address": asset.property_address,
            "total_value": asset.total_value,
            "total_shares": asset.total_shares,
            "is_active": asset.is_active,
        }, now)

    @property
    def asset_record(self) -> AssetRecord:
        return self._asset

    @property
    def issuance_cap(self) -> int:
        return self._asset.total_shares * self._metadata.unit

    def value_per_token(self) -> int:
        return self._asset.value_per_token()

    def total_property_value(self) -> int:
        return self._asset.total_value

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    @property
    def total_supply(self) -> int:
        return self._total_supply

    def holders(self) -> List[str]:
        """Accounts with a nonzero balance, sorted."""
        return sorted(a for a, b in self._balances.items() if b > 0)

    def is_verified(self, account: str) -> bool:
        return self._directory.is_verified(account)

    def can_transfer(self, from_account: str, to_account: str, amount: int) -> bool:
        return self._gate.can_transfer(from_account, to_account, amount)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _check_asset(asset: AssetRecord) -> None:
        if asset.total_shares <= 0:
            raise InvalidArgument("Asset total_shares must be positive")
        if asset.total_value < 0:
            raise InvalidArgument("Asset total_value must be non-negative")

    def _require_compliant(
        self,
        from_account: str,
        to_account: str,
        amount: int,
        index: Optional[int] = None,
    ) -> None:
        decision = self._gate.check_transfer(from_account, to_account, amount)
        if decision.allowed:
            return
        label = "Mint" if from_account == MINT_SENTINEL else "Transfer"
        if index is not None:
            label = f"Batch transfer {index}"
        raise ComplianceViolation(
            f"{label} to {to_account or '<none>'} denied: {decision.reason}",
            reason=decision.reason,
        )

    def _require_balance(self, account: str, amount: int) -> None:
        balance = self.balance_of(account)
        if balance < amount:
            raise InsufficientBalance(
                f"Balance {balance} of {account or '<none>'} is below {amount}"
            )

    def _move(self, from_account: str, to_account: str, amount: int) -> None:
        self._balances[from_account] -= amount
        self._balances[to_account] = self.balance_of(to_account) + amount

    def _notify_holders(
        self,
        from_account: str,
        to_account: str,
        amount: int,
        now: Optional[datetime],
    ) -> None:
        """Best-effort holder bookkeeping; never aborts the caller."""
        try:
            self._gate.update_holder_count(self._account, from_account, to_account, amount, now=now)
        except Exception as exc:
            logger.warning(
                "Holder count update failed for %s -> %s (%s): %s",
                from_account or "<mint>", to_account or "<burn>", amount, exc,
            )
            self._emit(EventKind.HOLDER_SYNC_FAILED, self._account, to_account, amount, {
                "from": from_account,
                "error_kind": getattr(exc, "kind", type(exc).__name__),
                "error": str(exc),
            }, now)

    def _emit(
        self,
        kind: EventKind,
        actor: str,
        subject: str,
        amount: Optional[int],
        payload: dict,
        now: Optional[datetime],
    ) -> None:
        if self._events is not None:
            self._events.record(kind, actor, subject, amount=amount, payload=payload, now=now)
