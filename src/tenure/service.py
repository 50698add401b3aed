"""Tenure service — unified facade over the asset and lease subsystems.

This is the primary interface for programmatic access to Tenure. It
wires the components together once, at construction:

- Capability table (deployer is admin, agent, compliance officer, registrar)
- Identity directory
- Compliance gate, bound read-only to the ledger
- Permissioned ledger, holding the TOKEN capability on the gate
- Payment token (issuer is the deployer)
- Lease escrow, which sees the ledger only for the ownership check

All mutations return a ServiceResult. Failures carry the taxonomy kind
in ``error_kind`` so a presentation layer can render a precise message.
Every committed mutation appends to the shared audit event log.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Sequence

from tenure.capabilities import Capability, CapabilityTable
from tenure.compliance.gate import ComplianceGate
from tenure.config import TenureConfig
from tenure.errors import TenureError
from tenure.identity.directory import IdentityDirectory
from tenure.lease.escrow import LeaseEscrow
from tenure.ledger.asset_token import PermissionedLedger
from tenure.ledger.payment_token import PaymentToken
from tenure.models.asset import AssetRecord
from tenure.models.lease import LeaseAgreement, RentPaymentRecord
from tenure.persistence.event_log import EventKind, EventLog


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_kind: str = ""


def lease_to_dict(lease: LeaseAgreement) -> dict[str, Any]:
    return {
        "lease_id": lease.lease_id,
        "landlord": lease.landlord,
        "tenant": lease.tenant,
        "asset_token_ref": lease.asset_token_ref,
        "monthly_rent": lease.monthly_rent,
        "security_deposit": lease.security_deposit,
        "start_utc": lease.start_utc.isoformat(),
        "end_utc": lease.end_utc.isoformat(),
        "property_descriptor": lease.property_descriptor,
        "terms": lease.terms,
        "status": lease.status.value,
        "deposit_paid_amount": lease.deposit_paid_amount,
        "deposit_returned": lease.deposit_returned,
        "last_payment_utc": lease.last_payment_utc.isoformat() if lease.last_payment_utc else None,
        "total_rent_paid": lease.total_rent_paid,
    }


def payment_to_dict(payment: RentPaymentRecord) -> dict[str, Any]:
    return {
        "lease_id": payment.lease_id,
        "payer": payment.payer,
        "amount": payment.amount,
        "timestamp_utc": payment.timestamp_utc.isoformat(),
        "month": payment.month,
        "year": payment.year,
    }


class TenureService:
    """Unified facade for the permissioned asset and its leases.

    Usage:
        service = TenureService(TenureConfig.load(), operator="operator")
        service.register_identity("operator", "alice", "kyc:alice", 840)
        service.mint("operator", "alice", 100 * service.ledger.metadata.unit)
        result = service.create_lease("alice", "bob", ...)
        if not result.success:
            print(result.error_kind, result.errors)
    """

    def __init__(
        self,
        config: TenureConfig,
        operator: str,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._config = config
        self._operator = operator
        self._events = event_log if event_log is not None else EventLog()

        self._capabilities = CapabilityTable(admin=operator)
        self._directory = IdentityDirectory(self._capabilities, self._events)
        self._gate = ComplianceGate(
            self._directory,
            self._capabilities,
            self._events,
            holder_cap=config.holder_cap,
            max_balance_per_investor=config.max_balance_per_investor,
            restricted_jurisdictions=config.restricted_jurisdictions,
        )
        self._ledger = PermissionedLedger(
            config.ledger_account,
            config.asset_token,
            config.asset,
            self._directory,
            self._gate,
            self._capabilities,
            self._events,
            amount_bits=config.amount_bits,
            max_batch_size=config.max_batch_size,
        )
        self._capabilities.grant(operator, self._ledger.account, Capability.TOKEN)
        self._gate.bind_ledger(self._ledger)

        self._payment_token = PaymentToken(
            config.payment_token, issuer=operator, events=self._events,
            amount_bits=config.amount_bits,
        )
        self._escrow = LeaseEscrow(
            self._payment_token,
            ledgers=[self._ledger],
            escrow_account=config.escrow_account,
            events=self._events,
            amount_bits=config.amount_bits,
        )

    # ------------------------------------------------------------------
    # Components (read access for queries and tooling)
    # ------------------------------------------------------------------

    @property
    def config(self) -> TenureConfig:
        return self._config

    @property
    def operator(self) -> str:
        return self._operator

    @property
    def events(self) -> EventLog:
        return self._events

    @property
    def capabilities(self) -> CapabilityTable:
        return self._capabilities

    @property
    def directory(self) -> IdentityDirectory:
        return self._directory

    @property
    def gate(self) -> ComplianceGate:
        return self._gate

    @property
    def ledger(self) -> PermissionedLedger:
        return self._ledger

    @property
    def payment_token(self) -> PaymentToken:
        return self._payment_token

    @property
    def escrow(self) -> LeaseEscrow:
        return self._escrow

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def grant_capability(self, caller: str, account: str, capability: Capability) -> ServiceResult:
        def _grant() -> None:
            self._capabilities.grant(caller, account, capability)
            self._events.record(
                EventKind.CAPABILITY_GRANTED, caller, account,
                payload={"capability": capability.value},
            )
        return self._invoke(_grant, lambda _: {"account": account, "capability": capability.value})

    def revoke_capability(self, caller: str, account: str, capability: Capability) -> ServiceResult:
        def _revoke() -> None:
            self._capabilities.revoke(caller, account, capability)
            self._events.record(
                EventKind.CAPABILITY_REVOKED, caller, account,
                payload={"capability": capability.value},
            )
        return self._invoke(_revoke, lambda _: {"account": account, "capability": capability.value})

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def register_identity(
        self,
        caller: str,
        account: str,
        identity_handle: str,
        jurisdiction_code: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._invoke(
            lambda: self._directory.register(caller, account, identity_handle, jurisdiction_code, now=now),
            lambda record: {"account": record.account, "jurisdiction_code": record.jurisdiction_code},
        )

    def remove_identity(self, caller: str, account: str, now: Optional[datetime] = None) -> ServiceResult:
        return self._invoke(
            lambda: self._directory.remove(caller, account, now=now),
            lambda _: {"account": account},
        )

    def update_jurisdiction(
        self,
        caller: str,
        account: str,
        jurisdiction_code: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._invoke(
            lambda: self._directory.update_jurisdiction(caller, account, jurisdiction_code, now=now),
            lambda record: {"account": record.account, "jurisdiction_code": record.jurisdiction_code},
        )

    def is_verified(self, account: str) -> bool:
        return self._directory.is_verified(account)

    def investor_jurisdiction(self, account: str) -> int:
        return self._directory.investor_jurisdiction(account)

    # ------------------------------------------------------------------
    # Compliance administration
    # ------------------------------------------------------------------

    def add_to_blacklist(self, caller: str, account: str, now: Optional[datetime] = None) -> ServiceResult:
        return self._invoke(lambda: self._gate.add_to_blacklist(caller, account, now=now),
                            lambda _: {"account": account})

    def remove_from_blacklist(self, caller: str, account: str, now: Optional[datetime] = None) -> ServiceResult:
        return self._invoke(lambda: self._gate.remove_from_blacklist(caller, account, now=now),
                            lambda _: {"account": account})

    def add_restricted_jurisdiction(self, caller: str, code: int, now: Optional[datetime] = None) -> ServiceResult:
        return self._invoke(lambda: self._gate.add_restricted_jurisdiction(caller, code, now=now),
                            lambda _: {"jurisdiction_code": code})

    def remove_restricted_jurisdiction(self, caller: str, code: int, now: Optional[datetime] = None) -> ServiceResult:
        return self._invoke(lambda: self._gate.remove_restricted_jurisdiction(caller, code, now=now),
                            lambda _: {"jurisdiction_code": code})

    def set_holder_cap(self, caller: str, cap: int, now: Optional[datetime] = None) -> ServiceResult:
        return self._invoke(lambda: self._gate.set_holder_cap(caller, cap, now=now),
                            lambda _: {"holder_cap": cap})

    def set_max_balance_per_investor(self, caller: str, limit: int, now: Optional[datetime] = None) -> ServiceResult:
        return self._invoke(lambda: self._gate.set_max_balance_per_investor(caller, limit, now=now),
                            lambda _: {"max_balance_per_investor": limit})

    def can_transfer(self, from_account: str, to_account: str, amount: int) -> bool:
        return self._gate.can_transfer(from_account, to_account, amount)

    def explain_transfer(self, from_account: str, to_account: str, amount: int) -> ServiceResult:
        """Like can_transfer, but says which check denied it."""
        decision = self._gate.check_transfer(from_account, to_account, amount)
        if decision.allowed:
            return ServiceResult(success=True, data={"allowed": True})
        return ServiceResult(
            success=False,
            errors=[decision.reason],
            data={"allowed": False, "reason": decision.reason},
            error_kind="compliance_violation",
        )

    # ------------------------------------------------------------------
    # Asset ledger
    # ------------------------------------------------------------------

    def mint(self, caller: str, to_account: str, amount: int, now: Optional[datetime] = None) -> ServiceResult:
        return self._invoke(lambda: self._ledger.mint(caller, to_account, amount, now=now),
                            lambda _: self._balance_data(to_account))

    def burn(self, caller: str, from_account: str, amount: int, now: Optional[datetime] = None) -> ServiceResult:
        return self._invoke(lambda: self._ledger.burn(caller, from_account, amount, now=now),
                            lambda _: self._balance_data(from_account))

    def transfer(self, caller: str, to_account: str, amount: int, now: Optional[datetime] = None) -> ServiceResult:
        return self._invoke(lambda: self._ledger.transfer(caller, to_account, amount, now=now),
                            lambda _: self._balance_data(caller, to_account))

    def approve(self, owner: str, spender: str, amount: int, now: Optional[datetime] = None) -> ServiceResult:
        return self._invoke(lambda: self._ledger.approve(owner, spender, amount, now=now),
                            lambda _: {"allowance": self._ledger.allowance(owner, spender)})

    def transfer_from(
        self,
        spender: str,
        from_account: str,
        to_account: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._invoke(
            lambda: self._ledger.transfer_from(spender, from_account, to_account, amount, now=now),
            lambda _: self._balance_data(from_account, to_account),
        )

    def forced_transfer(
        self,
        caller: str,
        from_account: str,
        to_account: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._invoke(
            lambda: self._ledger.forced_transfer(caller, from_account, to_account, amount, now=now),
            lambda _: self._balance_data(from_account, to_account),
        )

    def batch_transfer(
        self,
        caller: str,
        recipients: Sequence[str],
        amounts: Sequence[int],
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._invoke(
            lambda: self._ledger.batch_transfer(caller, recipients, amounts, now=now),
            lambda _: self._balance_data(caller, *recipients),
        )

    def update_asset_record(self, caller: str, asset: AssetRecord, now: Optional[datetime] = None) -> ServiceResult:
        return self._invoke(
            lambda: self._ledger.update_asset_record(caller, asset, now=now),
            lambda _: {"issuance_cap": self._ledger.issuance_cap},
        )

    def balance_of(self, account: str) -> int:
        return self._ledger.balance_of(account)

    def total_supply(self) -> int:
        return self._ledger.total_supply

    # ------------------------------------------------------------------
    # Payment token
    # ------------------------------------------------------------------

    def mint_payment(self, caller: str, to_account: str, amount: int, now: Optional[datetime] = None) -> ServiceResult:
        return self._invoke(
            lambda: self._payment_token.mint(caller, to_account, amount, now=now),
            lambda _: {"balance": self._payment_token.balance_of(to_account)},
        )

    def approve_payment(self, owner: str, amount: int, now: Optional[datetime] = None) -> ServiceResult:
        """Let the lease escrow draw up to ``amount`` from ``owner``."""
        spender = self._escrow.escrow_account
        return self._invoke(
            lambda: self._payment_token.approve(owner, spender, amount, now=now),
            lambda _: {"allowance": self._payment_token.allowance(owner, spender)},
        )

    def payment_balance_of(self, account: str) -> int:
        return self._payment_token.balance_of(account)

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------

    def create_lease(
        self,
        caller: str,
        tenant: str,
        monthly_rent: int,
        security_deposit: int,
        start_utc: datetime,
        end_utc: datetime,
        property_descriptor: str,
        terms: str = "",
        asset_token_ref: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._invoke(
            lambda: self._escrow.create_lease(
                caller, tenant, asset_token_ref or self._ledger.account,
                monthly_rent, security_deposit, start_utc, end_utc,
                property_descriptor, terms=terms, now=now,
            ),
            lease_to_dict,
        )

    def pay_security_deposit(self, caller: str, lease_id: int, now: Optional[datetime] = None) -> ServiceResult:
        return self._invoke(lambda: self._escrow.pay_security_deposit(caller, lease_id, now=now),
                            lease_to_dict)

    def pay_rent(
        self,
        caller: str,
        lease_id: int,
        month: int,
        year: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._invoke(
            lambda: self._escrow.pay_rent(caller, lease_id, month, year, now=now),
            lambda payment: dict(
                payment_to_dict(payment),
                total_rent_paid=self._escrow.get_lease(lease_id).total_rent_paid,
            ),
        )

    def terminate_lease(self, caller: str, lease_id: int, now: Optional[datetime] = None) -> ServiceResult:
        return self._invoke(lambda: self._escrow.terminate_lease(caller, lease_id, now=now),
                            lease_to_dict)

    def return_security_deposit(
        self,
        caller: str,
        lease_id: int,
        return_amount: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._invoke(
            lambda: self._escrow.return_security_deposit(caller, lease_id, return_amount, now=now),
            lambda payouts: {
                "lease_id": lease_id,
                "tenant_payout": payouts[0],
                "landlord_payout": payouts[1],
            },
        )

    def cancel_lease(self, caller: str, lease_id: int, now: Optional[datetime] = None) -> ServiceResult:
        return self._invoke(lambda: self._escrow.cancel_lease(caller, lease_id, now=now),
                            lease_to_dict)

    def mark_expired(
        self,
        lease_ids: Optional[Iterable[int]] = None,
        now: Optional[datetime] = None,
        caller: str = "",
    ) -> ServiceResult:
        """Expire overdue leases; sweeps every ACTIVE lease when ids are omitted."""
        ids = list(lease_ids) if lease_ids is not None else self._escrow.active_lease_ids()
        return self._invoke(
            lambda: self._escrow.mark_expired(ids, now=now, caller=caller),
            lambda expired: {"expired": expired},
        )

    def get_lease(self, lease_id: int) -> LeaseAgreement:
        return self._escrow.get_lease(lease_id)

    def get_rent_payments(self, lease_id: int) -> list[RentPaymentRecord]:
        return self._escrow.get_rent_payments(lease_id)

    def get_landlord_leases(self, landlord: str) -> list[int]:
        return self._escrow.get_landlord_leases(landlord)

    def get_tenant_leases(self, tenant: str) -> list[int]:
        return self._escrow.get_tenant_leases(tenant)

    def is_lease_expired(self, lease_id: int, now: Optional[datetime] = None) -> bool:
        return self._escrow.is_lease_expired(lease_id, now=now)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        compliance = self._gate.state()
        return {
            "token": {
                "symbol": self._ledger.metadata.symbol,
                "total_supply": str(self._ledger.total_supply),
                "issuance_cap": str(self._ledger.issuance_cap),
                "value_per_token": str(self._ledger.value_per_token()),
            },
            "compliance": {
                "holder_count": compliance.holder_count,
                "holder_cap": compliance.holder_cap,
                "blacklisted": len(compliance.blacklist),
                "restricted_jurisdictions": sorted(compliance.restricted_jurisdictions),
            },
            "identities": len(self._directory),
            "leases": self._escrow.lease_count,
            "events": self._events.count,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _balance_data(self, *accounts: str) -> dict[str, Any]:
        return {
            "balances": {a: self._ledger.balance_of(a) for a in accounts},
            "total_supply": self._ledger.total_supply,
        }

    @staticmethod
    def _invoke(
        operation: Callable[[], Any],
        describe: Callable[[Any], dict[str, Any]],
    ) -> ServiceResult:
        try:
            value = operation()
        except TenureError as exc:
            return ServiceResult(success=False, errors=[str(exc)], error_kind=exc.kind)
        return ServiceResult(success=True, data=describe(value))
