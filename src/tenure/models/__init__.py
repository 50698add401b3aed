"""Core data models for Tenure."""

from tenure.models.asset import AssetRecord, TokenMetadata
from tenure.models.identity import (
    ComplianceSnapshot,
    IdentityRecord,
    TransferDecision,
)
from tenure.models.lease import (
    LEASE_TRANSITIONS,
    LeaseAgreement,
    LeaseStatus,
    RentPaymentRecord,
)

__all__ = [
    "AssetRecord",
    "TokenMetadata",
    "ComplianceSnapshot",
    "IdentityRecord",
    "TransferDecision",
    "LEASE_TRANSITIONS",
    "LeaseAgreement",
    "LeaseStatus",
    "RentPaymentRecord",
]
