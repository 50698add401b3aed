"""Ledger subsystem — the permissioned asset token and the payment token."""

from tenure.ledger.asset_token import PermissionedLedger
from tenure.ledger.payment_token import PaymentToken

__all__ = ["PaymentToken", "PermissionedLedger"]
