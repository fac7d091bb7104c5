from __future__ import annotations

import pytest

from reclaim.economics.calculator import BonusMode, RewardParams
from reclaim.economics.ledger import RewardLedger
from reclaim.errors import AlreadySettled, InvalidMetric, ReclaimError, SessionNotFound
from reclaim.tests import ALICE, BOB

PARAMS = RewardParams(rate=100, bonus_multiplier=150, bonus_threshold=10)


@pytest.fixture
def ledger() -> RewardLedger:
    return RewardLedger(PARAMS)


def test_report_records_session_stats_and_pending(ledger):
    r = ledger.report_cleanup(ALICE, 3, now=10, height=1)
    assert r.session_id == 1
    assert r.reward_amount == 300
    assert r.cumulative == 3
    assert r.pending == 300

    s = ledger.get_session(ALICE, 1)
    assert s.accounts_cleaned == 3
    assert not s.settled
    stats = ledger.get_user_stats(ALICE)
    assert (stats.accounts_cleaned, stats.rewards_earned, stats.session_count) == (3, 300, 1)
    assert stats.last_activity == 10
    assert ledger.pending_of(ALICE) == 300


def test_tiering_example_nine_then_two(ledger):
    first = ledger.report_cleanup(ALICE, 9, now=1, height=1)
    second = ledger.report_cleanup(ALICE, 2, now=2, height=2)
    assert first.bonus == 0 and not first.bonus_applied
    assert second.bonus_applied
    assert second.bonus == 200 * 50 // 100
    assert ledger.pending_of(ALICE) == 900 + 300


def test_session_ids_are_per_reporter(ledger):
    assert ledger.report_cleanup(ALICE, 1, now=1, height=1).session_id == 1
    assert ledger.report_cleanup(BOB, 1, now=1, height=2).session_id == 1
    assert ledger.report_cleanup(ALICE, 1, now=1, height=3).session_id == 2
    assert ledger.peek_next_session_id(ALICE) == 3
    assert ledger.peek_next_session_id("anim1new") == 1
    assert ledger.global_stats().reporters == 2


def test_zero_report_rejected_without_state_change(ledger):
    ledger.report_cleanup(ALICE, 1, now=1, height=1)
    before = ledger.dump()
    with pytest.raises(InvalidMetric):
        ledger.report_cleanup(ALICE, 0, now=2, height=2)
    assert ledger.dump() == before


def test_settle_session_reduces_pending(ledger):
    ledger.report_cleanup(ALICE, 2, now=1, height=1)
    ledger.report_cleanup(ALICE, 3, now=1, height=2)
    s = ledger.settle_session(ALICE, 1, paid_to=ALICE, via="session", now=5)
    assert s.settled and s.settled_via == "session" and s.settled_at == 5
    assert ledger.pending_of(ALICE) == 300
    assert ledger.get_user_stats(ALICE).rewards_claimed == 200
    with pytest.raises(AlreadySettled):
        ledger.settle_session(ALICE, 1, paid_to=ALICE, via="session", now=6)
    with pytest.raises(SessionNotFound):
        ledger.require_unsettled(ALICE, 99)
    ledger.assert_consistent()


def test_settle_all_unsettled(ledger):
    ledger.report_cleanup(ALICE, 2, now=1, height=1)
    ledger.report_cleanup(ALICE, 3, now=1, height=2)
    ledger.settle_session(ALICE, 2, paid_to=ALICE, via="distribute", now=3)
    amount, ids = ledger.settle_all_unsettled(ALICE, expected=200, now=4)
    assert (amount, ids) == (200, [1])
    assert ledger.pending_of(ALICE) == 0
    assert ledger.list_sessions(ALICE, unsettled_only=True) == []
    assert ledger.get_session(ALICE, 1).settled_via == "aggregate"
    assert ledger.global_stats().total_rewards_paid == 500
    ledger.assert_consistent()


def test_settle_all_unsettled_requires_the_paid_amount(ledger):
    ledger.report_cleanup(ALICE, 2, now=1, height=1)
    before = ledger.dump()
    with pytest.raises(ReclaimError):
        ledger.settle_all_unsettled(ALICE, expected=100, now=2)
    assert ledger.dump() == before
    assert ledger.unsettled_total(ALICE) == 200


def test_reduce_pending_clamps_at_zero(ledger):
    ledger.report_cleanup(ALICE, 1, now=1, height=1)
    assert ledger.reduce_pending(ALICE, 1_000) == 100
    assert ledger.pending_of(ALICE) == 0


def test_set_params_affects_future_reports_only(ledger):
    ledger.report_cleanup(ALICE, 1, now=1, height=1)
    ledger.set_params(RewardParams(rate=7, bonus_multiplier=200, bonus_threshold=1, mode=BonusMode.PER_EVENT))
    r = ledger.report_cleanup(ALICE, 1, now=2, height=2)
    assert r.reward_amount == 14
    assert ledger.get_session(ALICE, 1).reward_amount == 100


def test_dump_load_round_trip(ledger):
    ledger.report_cleanup(ALICE, 4, now=1, height=1)
    ledger.report_cleanup(BOB, 12, now=2, height=2)
    ledger.settle_session(BOB, 1, paid_to=BOB, via="session", now=3)
    again = RewardLedger.load(PARAMS, ledger.dump())
    assert again.dump() == ledger.dump()
    assert again.global_stats() == ledger.global_stats()
