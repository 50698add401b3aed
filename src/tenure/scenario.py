"""Reference lease scenario — one property, one landlord, one tenant.

Runs the full happy path through the service facade:

1. Register landlord and tenant identities.
2. Mint 100 asset tokens to the landlord.
3. Mint 10 000 payment units to the tenant; tenant approves the escrow.
4. Landlord opens a one-year lease (rent 1 000, deposit 2 000).
5. Tenant pays the deposit (lease becomes ACTIVE) and the first rent.
6. Landlord terminates and returns 1 500 of the deposit; 500 is kept.

A second rent payment for the same month and a second deposit return
must both be refused.

Any step with an unexpected outcome raises ScenarioError naming the step.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from tenure.config import TenureConfig
from tenure.errors import AlreadyReturned, DuplicatePayment
from tenure.persistence.event_log import EventLog
from tenure.service import ServiceResult, TenureService

logger = logging.getLogger(__name__)

OPERATOR = "operator"
LANDLORD = "landlord"
TENANT = "tenant"
JURISDICTION_US = 840


class ScenarioError(RuntimeError):
    def __init__(self, step: str, result: ServiceResult) -> None:
        super().__init__(f"{step} failed ({result.error_kind}): {'; '.join(result.errors)}")
        self.step = step
        self.result = result


def _expect(step: str, result: ServiceResult) -> ServiceResult:
    if not result.success:
        raise ScenarioError(step, result)
    logger.debug("%s: %s", step, result.data)
    return result


def _expect_refusal(step: str, result: ServiceResult, error_kind: str) -> ServiceResult:
    if result.success or result.error_kind != error_kind:
        raise ScenarioError(step, result)
    logger.debug("%s refused: %s", step, result.error_kind)
    return result


def run_reference_scenario(
    config: Optional[TenureConfig] = None,
    event_log: Optional[EventLog] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Run the scenario on a fresh service and return the final balances."""
    config = config or TenureConfig()
    now = now or datetime.now(timezone.utc)
    service = TenureService(config, operator=OPERATOR, event_log=event_log)
    asset_unit = config.asset_token.unit
    pay_unit = config.payment_token.unit

    rent = 1_000 * pay_unit
    deposit = 2_000 * pay_unit
    refund = 1_500 * pay_unit

    _expect("register landlord", service.register_identity(
        OPERATOR, LANDLORD, "kyc:landlord", JURISDICTION_US, now=now))
    _expect("register tenant", service.register_identity(
        OPERATOR, TENANT, "kyc:tenant", JURISDICTION_US, now=now))
    _expect("mint asset", service.mint(OPERATOR, LANDLORD, 100 * asset_unit, now=now))
    _expect("mint payment", service.mint_payment(OPERATOR, TENANT, 10_000 * pay_unit, now=now))
    _expect("approve escrow", service.approve_payment(TENANT, 10_000 * pay_unit, now=now))

    start = now + timedelta(days=1)
    created = _expect("create lease", service.create_lease(
        LANDLORD, TENANT, rent, deposit,
        start_utc=start,
        end_utc=start + timedelta(days=365),
        property_descriptor=config.asset.property_address,
        terms="Standard 12-month residential lease",
        now=now,
    ))
    lease_id = created.data["lease_id"]
    logger.info("Opened lease %d for %s", lease_id, TENANT)

    _expect("pay deposit", service.pay_security_deposit(TENANT, lease_id, now=now))
    _expect("pay rent", service.pay_rent(TENANT, lease_id, start.month, start.year, now=now))
    duplicate = _expect_refusal("pay rent again", service.pay_rent(
        TENANT, lease_id, start.month, start.year, now=now), DuplicatePayment.kind)
    _expect("terminate", service.terminate_lease(LANDLORD, lease_id, now=now))
    settled = _expect("return deposit", service.return_security_deposit(
        LANDLORD, lease_id, refund, now=now))
    returned_twice = _expect_refusal(
        "return deposit again",
        service.return_security_deposit(LANDLORD, lease_id, refund, now=now),
        AlreadyReturned.kind,
    )

    lease = service.get_lease(lease_id)
    return {
        "lease_id": lease_id,
        "status": lease.status.value,
        "total_rent_paid": lease.total_rent_paid,
        "tenant_payout": settled.data["tenant_payout"],
        "landlord_payout": settled.data["landlord_payout"],
        "refused": [duplicate.error_kind, returned_twice.error_kind],
        "balances": {
            LANDLORD: service.payment_balance_of(LANDLORD),
            TENANT: service.payment_balance_of(TENANT),
            config.escrow_account: service.payment_balance_of(config.escrow_account),
        },
        "asset_balances": {LANDLORD: service.balance_of(LANDLORD)},
        "events": service.events.count,
    }
