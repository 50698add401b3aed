"""Tests for the compliance gate — proves transfer decisions follow the check order."""

import pytest
from datetime import datetime, timezone

from tenure.capabilities import Capability, CapabilityTable
from tenure.compliance import MINT_SENTINEL, ComplianceGate
from tenure.compliance import gate as reasons
from tenure.errors import AlreadyInState, AuthorizationError, CapExceeded, NotFound
from tenure.identity import IdentityDirectory
from tenure.persistence.event_log import EventKind, EventLog


def _now() -> datetime:
    return datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class FakeBalances:
    """Stand-in balance reader the gate consults for capacity checks."""

    def __init__(self) -> None:
        self.balances: dict[str, int] = {}

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)


@pytest.fixture
def table() -> CapabilityTable:
    return CapabilityTable(admin="operator")


@pytest.fixture
def events() -> EventLog:
    return EventLog()


@pytest.fixture
def directory(table: CapabilityTable, events: EventLog) -> IdentityDirectory:
    directory = IdentityDirectory(table, events)
    directory.register("operator", "alice", "kyc:alice", 840)
    directory.register("operator", "bob", "kyc:bob", 826)
    directory.register("operator", "carol", "kyc:carol", 408)
    return directory


@pytest.fixture
def balances() -> FakeBalances:
    return FakeBalances()


@pytest.fixture
def gate(
    directory: IdentityDirectory,
    table: CapabilityTable,
    events: EventLog,
    balances: FakeBalances,
) -> ComplianceGate:
    table.grant("operator", "LPT", Capability.TOKEN)
    gate = ComplianceGate(directory, table, events)
    gate.bind_ledger(balances)
    return gate


class TestMintDecisions:
    def test_mint_to_verified_allowed(self, gate: ComplianceGate) -> None:
        decision = gate.check_transfer(MINT_SENTINEL, "alice", 100)
        assert decision.allowed
        assert decision.reason == ""
        assert gate.can_transfer(MINT_SENTINEL, "alice", 100)

    def test_mint_to_unverified_denied(self, gate: ComplianceGate) -> None:
        decision = gate.check_transfer(MINT_SENTINEL, "dave", 100)
        assert not decision
        assert decision.reason == reasons.RECIPIENT_NOT_VERIFIED

    def test_mint_ignores_sender_checks(self, gate: ComplianceGate) -> None:
        # The zero account is never verified, yet minting is allowed.
        assert gate.can_transfer(MINT_SENTINEL, "bob", 1)

    def test_mint_to_blacklisted_denied(self, gate: ComplianceGate) -> None:
        gate.add_to_blacklist("operator", "alice")
        assert gate.check_transfer(MINT_SENTINEL, "alice", 1).reason == reasons.RECIPIENT_BLACKLISTED

    def test_mint_to_restricted_jurisdiction_denied(self, gate: ComplianceGate) -> None:
        gate.add_restricted_jurisdiction("operator", 840)
        decision = gate.check_transfer(MINT_SENTINEL, "alice", 1)
        assert decision.reason == reasons.RECIPIENT_JURISDICTION_RESTRICTED


class TestTransferDecisions:
    def test_verified_parties_allowed(self, gate: ComplianceGate) -> None:
        assert gate.can_transfer("alice", "bob", 50)

    def test_zero_recipient_denied(self, gate: ComplianceGate) -> None:
        assert gate.check_transfer("alice", "", 50).reason == reasons.INVALID_RECIPIENT

    def test_zero_amount_denied(self, gate: ComplianceGate) -> None:
        assert gate.check_transfer("alice", "bob", 0).reason == reasons.INVALID_AMOUNT

    def test_sender_blacklist_checked_before_recipient(self, gate: ComplianceGate) -> None:
        gate.add_to_blacklist("operator", "alice")
        gate.add_to_blacklist("operator", "bob")
        assert gate.check_transfer("alice", "bob", 1).reason == reasons.SENDER_BLACKLISTED

    def test_recipient_blacklisted(self, gate: ComplianceGate) -> None:
        gate.add_to_blacklist("operator", "bob")
        assert gate.check_transfer("alice", "bob", 1).reason == reasons.RECIPIENT_BLACKLISTED

    def test_blacklist_checked_before_verification(self, gate: ComplianceGate) -> None:
        gate.add_to_blacklist("operator", "bob")
        assert gate.check_transfer("dave", "bob", 1).reason == reasons.RECIPIENT_BLACKLISTED

    def test_sender_not_verified(self, gate: ComplianceGate) -> None:
        assert gate.check_transfer("dave", "bob", 1).reason == reasons.SENDER_NOT_VERIFIED

    def test_recipient_not_verified(self, gate: ComplianceGate) -> None:
        assert gate.check_transfer("alice", "dave", 1).reason == reasons.RECIPIENT_NOT_VERIFIED

    def test_sender_jurisdiction_restricted(self, gate: ComplianceGate) -> None:
        gate.add_restricted_jurisdiction("operator", 840)
        assert gate.check_transfer("alice", "bob", 1).reason == reasons.SENDER_JURISDICTION_RESTRICTED

    def test_recipient_jurisdiction_restricted(self, gate: ComplianceGate) -> None:
        gate.add_restricted_jurisdiction("operator", 826)
        assert gate.check_transfer("alice", "bob", 1).reason == reasons.RECIPIENT_JURISDICTION_RESTRICTED

    def test_removed_identity_blocks_transfer(
        self, gate: ComplianceGate, directory: IdentityDirectory,
    ) -> None:
        directory.remove("operator", "bob")
        assert not gate.can_transfer("alice", "bob", 1)

    def test_unrestricting_reallows(self, gate: ComplianceGate) -> None:
        gate.add_restricted_jurisdiction("operator", 826)
        gate.remove_restricted_jurisdiction("operator", 826)
        assert gate.can_transfer("alice", "bob", 1)


class TestCapacity:
    def test_holder_cap_blocks_new_holder(self, gate: ComplianceGate) -> None:
        gate.set_holder_cap("operator", 1)
        gate.update_holder_count("LPT", MINT_SENTINEL, "alice", 10)
        assert gate.holder_count == 1
        decision = gate.check_transfer("alice", "bob", 1)
        assert decision.reason == reasons.HOLDER_CAP_REACHED

    def test_holder_cap_allows_existing_holder(self, gate: ComplianceGate) -> None:
        gate.set_holder_cap("operator", 1)
        gate.update_holder_count("LPT", MINT_SENTINEL, "alice", 10)
        assert gate.can_transfer(MINT_SENTINEL, "alice", 5)

    def test_max_balance_uses_prospective_balance(
        self, gate: ComplianceGate, balances: FakeBalances,
    ) -> None:
        gate.set_max_balance_per_investor("operator", 100)
        balances.balances["bob"] = 60
        assert gate.can_transfer("alice", "bob", 40)
        decision = gate.check_transfer("alice", "bob", 41)
        assert decision.reason == reasons.MAX_BALANCE_EXCEEDED

    def test_self_transfer_at_max_balance_allowed(
        self, gate: ComplianceGate, balances: FakeBalances,
    ) -> None:
        gate.set_max_balance_per_investor("operator", 100)
        balances.balances["alice"] = 100
        assert gate.can_transfer("alice", "alice", 1)
        assert gate.check_transfer("bob", "alice", 1).reason == reasons.MAX_BALANCE_EXCEEDED

    def test_untracked_account_with_balance_is_a_holder(
        self, gate: ComplianceGate, balances: FakeBalances,
    ) -> None:
        gate.set_holder_cap("operator", 1)
        gate.update_holder_count("LPT", MINT_SENTINEL, "alice", 10)
        balances.balances["bob"] = 5
        assert not gate.is_holder("bob")
        assert gate.holds_balance("bob")
        assert gate.can_transfer("alice", "bob", 1)
        assert gate.check_transfer("alice", "carol", 1).reason == reasons.HOLDER_CAP_REACHED

    def test_zero_limits_mean_unlimited(self, gate: ComplianceGate) -> None:
        assert gate.holder_cap == 0
        assert gate.max_balance_per_investor == 0
        assert gate.can_transfer(MINT_SENTINEL, "alice", 10 ** 30)


class TestHolderBookkeeping:
    def test_requires_token_capability(self, gate: ComplianceGate) -> None:
        with pytest.raises(AuthorizationError):
            gate.update_holder_count("operator", MINT_SENTINEL, "alice", 1)

    def test_unbound_gate_raises(
        self, directory: IdentityDirectory, table: CapabilityTable,
    ) -> None:
        table.grant("operator", "LPT", Capability.TOKEN)
        unbound = ComplianceGate(directory, table)
        with pytest.raises(NotFound):
            unbound.update_holder_count("LPT", MINT_SENTINEL, "alice", 1)

    def test_sender_removed_at_zero_balance(
        self, gate: ComplianceGate, balances: FakeBalances, events: EventLog,
    ) -> None:
        balances.balances["alice"] = 10
        gate.update_holder_count("LPT", MINT_SENTINEL, "alice", 10, now=_now())
        balances.balances = {"alice": 0, "bob": 10}
        gate.update_holder_count("LPT", "alice", "bob", 10, now=_now())
        assert not gate.is_holder("alice")
        assert gate.is_holder("bob")
        assert gate.holder_count == 1
        assert len(events.events(EventKind.HOLDER_REMOVED)) == 1

    def test_full_transfer_at_cap_frees_slot_first(
        self, gate: ComplianceGate, balances: FakeBalances,
    ) -> None:
        gate.set_holder_cap("operator", 1)
        balances.balances["alice"] = 10
        gate.update_holder_count("LPT", MINT_SENTINEL, "alice", 10)
        balances.balances = {"alice": 0, "bob": 10}
        gate.update_holder_count("LPT", "alice", "bob", 10)
        assert gate.state().holders == frozenset({"bob"})

    def test_cap_full_raises(self, gate: ComplianceGate, balances: FakeBalances) -> None:
        gate.set_holder_cap("operator", 1)
        balances.balances = {"alice": 10, "bob": 5}
        gate.update_holder_count("LPT", MINT_SENTINEL, "alice", 10)
        with pytest.raises(CapExceeded):
            gate.update_holder_count("LPT", MINT_SENTINEL, "bob", 5)
        assert gate.holder_count == 1

    def test_burn_releases_holder(self, gate: ComplianceGate, balances: FakeBalances) -> None:
        balances.balances["alice"] = 10
        gate.update_holder_count("LPT", MINT_SENTINEL, "alice", 10)
        balances.balances["alice"] = 0
        gate.update_holder_count("LPT", "alice", "", 10)
        assert gate.holder_count == 0


class TestAdministration:
    def test_mutators_require_compliance_officer(self, gate: ComplianceGate) -> None:
        with pytest.raises(AuthorizationError):
            gate.add_to_blacklist("alice", "bob")
        with pytest.raises(AuthorizationError):
            gate.add_restricted_jurisdiction("alice", 840)
        with pytest.raises(AuthorizationError):
            gate.set_holder_cap("alice", 10)
        with pytest.raises(AuthorizationError):
            gate.set_max_balance_per_investor("alice", 10)

    def test_blacklist_twice_already_in_state(self, gate: ComplianceGate) -> None:
        gate.add_to_blacklist("operator", "bob")
        with pytest.raises(AlreadyInState):
            gate.add_to_blacklist("operator", "bob")

    def test_unblacklist_absent_already_in_state(self, gate: ComplianceGate) -> None:
        with pytest.raises(AlreadyInState):
            gate.remove_from_blacklist("operator", "bob")

    def test_restrict_twice_already_in_state(self, gate: ComplianceGate) -> None:
        gate.add_restricted_jurisdiction("operator", 840)
        with pytest.raises(AlreadyInState):
            gate.add_restricted_jurisdiction("operator", 840)
        assert gate.is_jurisdiction_restricted(840)

    def test_holder_cap_below_count_rejected(
        self, gate: ComplianceGate, balances: FakeBalances,
    ) -> None:
        balances.balances = {"alice": 1, "bob": 1}
        gate.update_holder_count("LPT", MINT_SENTINEL, "alice", 1)
        gate.update_holder_count("LPT", MINT_SENTINEL, "bob", 1)
        with pytest.raises(CapExceeded):
            gate.set_holder_cap("operator", 1)
        gate.set_holder_cap("operator", 2)
        assert gate.holder_cap == 2

    def test_admin_changes_emit_events(self, gate: ComplianceGate, events: EventLog) -> None:
        gate.add_to_blacklist("operator", "bob", now=_now())
        gate.set_holder_cap("operator", 50, now=_now())
        kinds = [e.event_kind for e in events.events()][-2:]
        assert kinds == [EventKind.BLACKLIST_ADDED, EventKind.HOLDER_CAP_SET]
        assert events.last_event.amount == 50

    def test_state_snapshot(self, gate: ComplianceGate) -> None:
        gate.add_to_blacklist("operator", "bob")
        gate.add_restricted_jurisdiction("operator", 408)
        snapshot = gate.state()
        assert snapshot.blacklist == frozenset({"bob"})
        assert snapshot.restricted_jurisdictions == frozenset({408})
        assert snapshot.holder_count == len(snapshot.holders)

    def test_bind_second_ledger_rejected(self, gate: ComplianceGate) -> None:
        with pytest.raises(AlreadyInState):
            gate.bind_ledger(FakeBalances())


class TestDecisionStability:
    def test_blacklisted_sender_stays_denied_until_removed(self, gate: ComplianceGate) -> None:
        gate.add_to_blacklist("operator", "alice")
        gate.add_restricted_jurisdiction("operator", 408)
        gate.set_max_balance_per_investor("operator", 10 ** 6)
        for _ in range(3):
            assert gate.check_transfer("alice", "bob", 5).reason == reasons.SENDER_BLACKLISTED
        gate.remove_from_blacklist("operator", "alice")
        assert gate.can_transfer("alice", "bob", 5)

    def test_unrelated_blacklisting_never_affects_mint(self, gate: ComplianceGate) -> None:
        assert gate.can_transfer(MINT_SENTINEL, "alice", 7)
        for account in ("bob", "carol", "dave"):
            gate.add_to_blacklist("operator", account)
        assert gate.can_transfer(MINT_SENTINEL, "alice", 7)
