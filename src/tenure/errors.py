"""Error taxonomy for Tenure operations.

Every failed check aborts the whole operation and surfaces one of the
kinds below. The service facade reports ``exc.kind`` so a presentation
layer can render a precise message without parsing text.
"""

from __future__ import annotations

from typing import Optional


class TenureError(Exception):
    """Base class for all Tenure failures."""
    kind = "tenure_error"


class InvalidArgument(TenureError, ValueError):
    """Malformed input: empty account, zero amount, bad date range."""
    kind = "invalid_argument"


class ComplianceViolation(TenureError):
    """The compliance gate denied the transfer.

    ``reason`` is the gate's reason code (e.g. ``recipient_not_verified``).
    """
    kind = "compliance_violation"

    def __init__(self, message: str, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason


class AuthorizationError(TenureError, PermissionError):
    """Caller lacks the required capability or party role."""
    kind = "authorization_error"


class InsufficientBalance(TenureError):
    kind = "insufficient_balance"


class CapExceeded(TenureError):
    """Issuance cap or holder cap would be exceeded."""
    kind = "cap_exceeded"


class InvalidStateTransition(TenureError, ValueError):
    """Lease is not in the status the operation requires."""
    kind = "invalid_state_transition"


class DuplicatePayment(TenureError):
    kind = "duplicate_payment"


class AlreadyReturned(TenureError):
    kind = "already_returned"


class NotFound(TenureError, LookupError):
    """Unknown lease, identity, or asset reference."""
    kind = "not_found"


class AlreadyInState(TenureError):
    """An administrative toggle was requested for a state that already holds."""
    kind = "already_in_state"
