"""Tests for the audit event log — proves append-only, hashed, replayable records."""

import json
import logging

import pytest
from datetime import datetime, timezone
from pathlib import Path

from tenure.persistence.event_log import EventKind, EventLog, EventRecord


def _now() -> datetime:
    return datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class TestEventRecord:
    def test_hash_is_deterministic(self) -> None:
        a = EventRecord.create("evt_1", EventKind.MINTED, "agent", "alice", 10, timestamp_utc=_now())
        b = EventRecord.create("evt_1", EventKind.MINTED, "agent", "alice", 10, timestamp_utc=_now())
        assert a.event_hash == b.event_hash
        assert a.event_hash.startswith("sha256:")

    def test_hash_covers_amount(self) -> None:
        a = EventRecord.create("evt_1", EventKind.MINTED, "agent", "alice", 10, timestamp_utc=_now())
        b = EventRecord.create("evt_1", EventKind.MINTED, "agent", "alice", 11, timestamp_utc=_now())
        assert a.event_hash != b.event_hash

    def test_timestamp_format(self) -> None:
        event = EventRecord.create("evt_1", EventKind.BURNED, "agent", timestamp_utc=_now())
        assert event.timestamp_utc == "2026-03-01T09:00:00Z"
        assert event.to_dict()["event_kind"] == "burned"


class TestEventLog:
    def test_record_assigns_sequential_ids(self) -> None:
        log = EventLog()
        first = log.record(EventKind.MINTED, "agent", "alice", amount=5, now=_now())
        second = log.record(EventKind.BURNED, "agent", "alice", amount=5, now=_now())
        assert (first.event_id, second.event_id) == ("evt_00000001", "evt_00000002")
        assert log.count == 2
        assert log.last_event == second

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        event = EventRecord.create("evt_x", EventKind.MINTED, "agent", timestamp_utc=_now())
        log.append(event)
        with pytest.raises(ValueError, match="Duplicate"):
            log.append(event)

    def test_filters(self) -> None:
        log = EventLog()
        log.record(EventKind.MINTED, "agent", "alice", amount=1)
        log.record(EventKind.MINTED, "agent", "bob", amount=1)
        log.record(EventKind.TRANSFERRED, "alice", "bob", amount=1)
        assert len(log.events(EventKind.MINTED)) == 2
        assert len(log.events_for("bob")) == 2
        assert len(log.events()) == 3

    def test_subscribe_and_unsubscribe(self) -> None:
        log = EventLog()
        seen: list = []
        unsubscribe = log.subscribe(seen.append)
        log.record(EventKind.MINTED, "agent", "alice", amount=1)
        unsubscribe()
        log.record(EventKind.MINTED, "agent", "alice", amount=1)
        assert len(seen) == 1

    def test_failing_subscriber_does_not_block_commit(
        self, caplog: pytest.LogCaptureFixture,
    ) -> None:
        log = EventLog()

        def explode(event) -> None:
            raise RuntimeError("boom")

        log.subscribe(explode)
        with caplog.at_level(logging.ERROR, logger="tenure.persistence.event_log"):
            log.record(EventKind.MINTED, "agent", "alice", amount=1)
        assert log.count == 1
        assert "subscriber failed" in caplog.text


class TestPersistence:
    def test_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.record(EventKind.LEASE_CREATED, "landlord", "lease:1", amount=1_000,
                   payload={"tenant": "tenant"}, now=_now())
        log.record(EventKind.DEPOSIT_PAID, "tenant", "lease:1", amount=2_000, now=_now())

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.events()[0].payload == {"tenant": "tenant"}
        assert reloaded.last_event.event_hash == log.last_event.event_hash
        nxt = reloaded.record(EventKind.RENT_PAID, "tenant", "lease:1", amount=1_000)
        assert nxt.event_id == "evt_00000003"

    def test_tampered_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.record(EventKind.MINTED, "agent", "alice", amount=10, now=_now())

        data = json.loads(path.read_text(encoding="utf-8"))
        data["amount"] = 10_000
        path.write_text(json.dumps(data) + "\n", encoding="utf-8")
        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(storage_path=path)
