"""Payment token — the stablecoin-like unit rent and deposits are paid in.

A plain fungible balance table with allowances. It is not
compliance-gated: the lease escrow moves payment units between parties
and its own custody account without consulting the compliance gate.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional, Tuple

from tenure.errors import AuthorizationError, InsufficientBalance, InvalidArgument
from tenure.ledger.asset_token import validate_amount
from tenure.models.asset import TokenMetadata
from tenure.persistence.event_log import EventKind, EventLog


class PaymentToken:
    """Fungible payment ledger.

    Usage:
        usdc = PaymentToken(TokenMetadata("Mock USDC", "USDC", 6), issuer="treasury")
        usdc.mint("treasury", "tenant", 10_000 * usdc.metadata.unit)
        usdc.approve("tenant", "lease-escrow", 2_000 * usdc.metadata.unit)
    """

    def __init__(
        self,
        metadata: TokenMetadata,
        issuer: str,
        events: Optional[EventLog] = None,
        amount_bits: int = 256,
    ) -> None:
        if not issuer:
            raise InvalidArgument("Issuer must be non-empty")
        self._metadata = metadata
        self._issuer = issuer
        self._events = events
        self._amount_bits = amount_bits
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        self._total_supply = 0

    @property
    def metadata(self) -> TokenMetadata:
        return self._metadata

    @property
    def issuer(self) -> str:
        return self._issuer

    def mint(self, caller: str, to_account: str, amount: int, now: Optional[datetime] = None) -> None:
        if caller != self._issuer:
            raise AuthorizationError(f"Only the issuer may mint {self._metadata.symbol}")
        if not to_account:
            raise InvalidArgument("Recipient must be non-empty")
        validate_amount(amount, self._amount_bits)
        self._balances[to_account] = self.balance_of(to_account) + amount
        self._total_supply += amount
        self._emit(EventKind.PAYMENT_MINTED, caller, to_account, amount, {}, now)

    def transfer(self, sender: str, to_account: str, amount: int, now: Optional[datetime] = None) -> None:
        self._check_parties(sender, to_account)
        validate_amount(amount, self._amount_bits)
        self._require_balance(sender, amount)
        self._move(sender, to_account, amount)
        self._emit(EventKind.PAYMENT_TRANSFERRED, sender, to_account, amount, {"from": sender}, now)

    def approve(self, owner: str, spender: str, amount: int, now: Optional[datetime] = None) -> None:
        self._check_parties(owner, spender)
        validate_amount(amount, self._amount_bits, allow_zero=True)
        self._allowances[(owner, spender)] = amount
        self._emit(EventKind.PAYMENT_APPROVAL_SET, owner, spender, amount, {}, now)

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
        self._check_parties(from_account, to_account)
        validate_amount(amount, self._amount_bits)
        self._require_balance(from_account, amount)
        allowed = self.allowance(from_account, spender)
        if allowed < amount:
            raise InsufficientBalance(
                f"{self._metadata.symbol} allowance {allowed} for {spender} "
                f"over {from_account} is below {amount}"
            )
        self._allowances[(from_account, spender)] = allowed - amount
        self._move(from_account, to_account, amount)
        self._emit(EventKind.PAYMENT_TRANSFERRED, spender, to_account, amount, {
            "from": from_account,
            "spender": spender,
        }, now)

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    @property
    def total_supply(self) -> int:
        return self._total_supply

    @staticmethod
    def _check_parties(first: str, second: str) -> None:
        if not first or not second:
            raise InvalidArgument("Accounts must be non-empty")

    def _require_balance(self, account: str, amount: int) -> None:
        balance = self.balance_of(account)
        if balance < amount:
            raise InsufficientBalance(
                f"{self._metadata.symbol} balance {balance} of {account} is below {amount}"
            )

    def _move(self, from_account: str, to_account: str, amount: int) -> None:
        self._balances[from_account] -= amount
        self._balances[to_account] = self.balance_of(to_account) + amount

    def _emit(
        self,
        kind: EventKind,
        actor: str,
        subject: str,
        amount: int,
        payload: dict,
        now: Optional[datetime],
    ) -> None:
        if self._events is not None:
            self._events.record(kind, actor, subject, amount=amount, payload=payload, now=now)
