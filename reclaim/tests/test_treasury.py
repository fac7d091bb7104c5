from __future__ import annotations

import pytest

from reclaim.errors import InsufficientFunds, InvalidAmount, Unauthorized
from reclaim.tests import ALICE, OWNER, SPONSOR
from reclaim.treasury.state import RecordingSink, Treasury


@pytest.fixture
def treasury(guard, sink) -> Treasury:
    return Treasury(guard, sink=sink)


def test_anyone_may_fund_by_default(treasury):
    e = treasury.fund(SPONSOR, 1_000, height=1)
    assert e.op == "fund" and e.balance_after == 1_000
    assert treasury.balance == 1_000
    assert treasury.total_funded == 1_000


def test_fund_owner_only_policy(guard):
    t = Treasury(guard, fund_owner_only=True)
    with pytest.raises(Unauthorized):
        t.fund(SPONSOR, 10, height=1)
    t.fund(OWNER, 10, height=1)
    assert t.balance == 10


@pytest.mark.parametrize("amount", [0, -5, True])
def test_fund_rejects_non_positive(treasury, amount):
    with pytest.raises(InvalidAmount):
        treasury.fund(SPONSOR, amount, height=1)
    assert treasury.balance == 0


def test_debit_pays_sink_and_conserves(treasury, sink):
    treasury.fund(SPONSOR, 500, height=1)
    treasury.debit(200, to=ALICE, height=2, reason="session:1")
    assert treasury.balance == 300
    assert treasury.total_paid == 200
    assert sink.transfers == [(ALICE, 200, "session:1")]
    assert treasury.balance == treasury.total_funded - treasury.total_paid
    treasury.assert_consistent()


def test_debit_never_overdraws(treasury, sink):
    treasury.fund(SPONSOR, 50, height=1)
    with pytest.raises(InsufficientFunds):
        treasury.debit(51, to=ALICE, height=2, reason="x")
    assert treasury.balance == 50
    assert sink.transfers == []


def test_emergency_withdraw(treasury, sink):
    treasury.fund(SPONSOR, 300, height=1)
    with pytest.raises(Unauthorized):
        treasury.emergency_withdraw(ALICE, 100, height=2)
    with pytest.raises(InsufficientFunds):
        treasury.emergency_withdraw(OWNER, 301, height=2)
    with pytest.raises(InvalidAmount):
        treasury.emergency_withdraw(OWNER, 0, height=2)
    e = treasury.emergency_withdraw(OWNER, 300, height=2)
    assert e.op == "emergency_withdraw"
    assert treasury.balance == 0
    assert sink.total_to(OWNER) == 300


def test_journal_and_round_trip(treasury, guard):
    treasury.fund(SPONSOR, 100, height=1)
    treasury.debit(40, to=ALICE, height=2, reason="claim_rewards")
    ops = [e.op for e in treasury.journal()]
    assert ops == ["fund", "payout"]
    again = Treasury.load(guard, treasury.dump(), sink=RecordingSink())
    assert again.dump() == treasury.dump()
