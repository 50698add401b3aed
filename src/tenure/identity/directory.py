"""Identity directory — maps accounts to verified-identity records.

Pure lookup store. The directory answers "is this account verified, and
under which jurisdiction?" and nothing else; policy lives in the
compliance gate.

Registration, removal and jurisdiction updates require the REGISTRAR
capability.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Optional

from tenure.capabilities import Capability, CapabilityTable
from tenure.errors import InvalidArgument, NotFound
from tenure.models.identity import IdentityRecord
from tenure.persistence.event_log import EventKind, EventLog


class IdentityDirectory:
    """Registry of verified identities keyed by account.

    Usage:
        directory = IdentityDirectory(capabilities, events)
        directory.register("operator", "alice", "kyc:alice", 840)
        directory.is_verified("alice")  # True
    """

    def __init__(
        self,
        capabilities: CapabilityTable,
        events: Optional[EventLog] = None,
    ) -> None:
        self._capabilities = capabilities
        self._events = events
        self._records: Dict[str, IdentityRecord] = {}

    def register(
        self,
        caller: str,
        account: str,
        identity_handle: str,
        jurisdiction_code: int,
        now: Optional[datetime] = None,
    ) -> IdentityRecord:
        """Register (or overwrite) the identity record for an account."""
        self._capabilities.require_capability(caller, Capability.REGISTRAR)
        if not account:
            raise InvalidArgument("Account must be non-empty")
        if not identity_handle:
            raise InvalidArgument("Identity handle must be non-empty")
        if not jurisdiction_code:
            raise InvalidArgument("Jurisdiction code must be nonzero")
        if now is None:
            now = datetime.now(timezone.utc)

        record = IdentityRecord(
            account=account,
            identity_handle=identity_handle,
            jurisdiction_code=jurisdiction_code,
            registered_utc=now,
        )
        self._records[account] = record
        self._emit(EventKind.IDENTITY_REGISTERED, caller, account, {
            "identity_handle": identity_handle,
            "jurisdiction_code": jurisdiction_code,
        }, now)
        return replace(record)

    def remove(
        self,
        caller: str,
        account: str,
        now: Optional[datetime] = None,
    ) -> None:
        self._capabilities.require_capability(caller, Capability.REGISTRAR)
        if account not in self._records:
            raise NotFound(f"No identity registered for account: {account}")
        del self._records[account]
        self._emit(EventKind.IDENTITY_REMOVED, caller, account, {}, now)

    def update_jurisdiction(
        self,
        caller: str,
        account: str,
        jurisdiction_code: int,
        now: Optional[datetime] = None,
    ) -> IdentityRecord:
        self._capabilities.require_capability(caller, Capability.REGISTRAR)
        record = self._records.get(account)
        if record is None:
            raise NotFound(f"No identity registered for account: {account}")
        if not jurisdiction_code:
            raise InvalidArgument("Jurisdiction code must be nonzero")
        previous = record.jurisdiction_code
        record.jurisdiction_code = jurisdiction_code
        self._emit(EventKind.JURISDICTION_UPDATED, caller, account, {
            "previous": previous,
            "jurisdiction_code": jurisdiction_code,
        }, now)
        return replace(record)

    def is_verified(self, account: str) -> bool:
        record = self._records.get(account)
        return record is not None and record.is_verified

    def investor_jurisdiction(self, account: str) -> int:
        """Jurisdiction code for an account, or 0 when unregistered."""
        record = self._records.get(account)
        return record.jurisdiction_code if record is not None else 0

    def get_record(self, account: str) -> IdentityRecord:
        record = self._records.get(account)
        if record is None:
            raise NotFound(f"No identity registered for account: {account}")
        return replace(record)

    def __contains__(self, account: object) -> bool:
        return account in self._records

    def __len__(self) -> int:
        return len(self._records)

    def _emit(
        self,
        kind: EventKind,
        actor: str,
        subject: str,
        payload: dict,
        now: Optional[datetime],
    ) -> None:
        if self._events is not None:
            self._events.record(kind, actor, subject, payload=payload, now=now)
