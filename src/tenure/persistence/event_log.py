"""Append-only audit log — the event stream consumers subscribe to.

Every committed mutation appends one event record. Events are immutable
once written. The log serves as:
1. The only contract a presentation layer may depend on.
2. The audit trail for regulators and operators.
3. The place swallowed holder-count failures become observable.

Records are hashed over canonical JSON so a persisted log can be
verified on load.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    """Classification of audit events."""
    # Identity directory
    IDENTITY_REGISTERED = "identity_registered"
    IDENTITY_REMOVED = "identity_removed"
    JURISDICTION_UPDATED = "jurisdiction_updated"
    # Compliance administration
    BLACKLIST_ADDED = "blacklist_added"
    BLACKLIST_REMOVED = "blacklist_removed"
    JURISDICTION_RESTRICTED = "jurisdiction_restricted"
    JURISDICTION_UNRESTRICTED = "jurisdiction_unrestricted"
    HOLDER_CAP_SET = "holder_cap_set"
    MAX_BALANCE_SET = "max_balance_set"
    HOLDER_ADDED = "holder_added"
    HOLDER_REMOVED = "holder_removed"
    HOLDER_SYNC_FAILED = "holder_sync_failed"
    # Asset ledger
    MINTED = "minted"
    BURNED = "burned"
    TRANSFERRED = "transferred"
    FORCED_TRANSFER = "forced_transfer"
    BATCH_TRANSFERRED = "batch_transferred"
    APPROVAL_SET = "approval_set"
    ASSET_RECORD_UPDATED = "asset_record_updated"
    # Payment token
    PAYMENT_MINTED = "payment_minted"
    PAYMENT_TRANSFERRED = "payment_transferred"
    PAYMENT_APPROVAL_SET = "payment_approval_set"
    # Lease lifecycle
    LEASE_CREATED = "lease_created"
    DEPOSIT_PAID = "deposit_paid"
    RENT_PAID = "rent_paid"
    LEASE_TERMINATED = "lease_terminated"
    LEASE_CANCELLED = "lease_cancelled"
    LEASE_EXPIRED = "lease_expired"
    DEPOSIT_RETURNED = "deposit_returned"
    # Capabilities
    CAPABILITY_GRANTED = "capability_granted"
    CAPABILITY_REVOKED = "capability_revoked"


def _canonical_hash(fields: dict[str, Any]) -> str:
    canonical = json.dumps(fields, sort_keys=True, ensure_ascii=False).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable audit event.

    ``{event_kind, actor_id, subject_id, amount, timestamp_utc}`` is the
    public shape; ``payload`` carries kind-specific detail.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    subject_id: str
    amount: Optional[int]
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        subject_id: str = "",
        amount: Optional[int] = None,
        payload: Optional[dict[str, Any]] = None,
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        payload = dict(payload or {})
        digest = _canonical_hash({
            "event_id": event_id,
            "event_kind": event_kind.value,
            "timestamp_utc": ts_str,
            "actor_id": actor_id,
            "subject_id": subject_id,
            "amount": amount,
            "payload": payload,
        })
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            subject_id=subject_id,
            amount=amount,
            payload=payload,
            event_hash=digest,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "subject_id": self.subject_id,
            "amount": self.amount,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


Subscriber = Callable[[EventRecord], None]


class EventLog:
    """Append-only event log with optional JSONL persistence.

    Events can only be appended, never modified or deleted. Subscribers
    are called synchronously after each append.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._event_ids: set[str] = set()
        self._storage_path = storage_path
        self._subscribers: list[Subscriber] = []

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        self._events.append(event)
        self._event_ids.add(event.event_id)

        if self._storage_path:
            self._append_to_file(event)
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                # Event is already committed.
                logger.exception("Event subscriber failed on %s", event.event_id)

    def record(
        self,
        kind: EventKind,
        actor_id: str,
        subject_id: str = "",
        amount: Optional[int] = None,
        payload: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> EventRecord:
        """Build the next sequential event and append it."""
        event = EventRecord.create(
            event_id=f"evt_{self.count + 1:08d}",
            event_kind=kind,
            actor_id=actor_id,
            subject_id=subject_id,
            amount=amount,
            payload=payload,
            timestamp_utc=now,
        )
        self.append(event)
        return event

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback for new events. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_for(self, subject_id: str) -> list[EventRecord]:
        return [e for e in self._events if e.subject_id == subject_id]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, event: EventRecord) -> None:
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]

                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _canonical_hash({
                    "event_id": data["event_id"],
                    "event_kind": data["event_kind"],
                    "timestamp_utc": data["timestamp_utc"],
                    "actor_id": data["actor_id"],
                    "subject_id": data["subject_id"],
                    "amount": data["amount"],
                    "payload": data["payload"],
                })
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    subject_id=data["subject_id"],
                    amount=data["amount"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event_id)
