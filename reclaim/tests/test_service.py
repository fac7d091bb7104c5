from __future__ import annotations

import threading

import pytest

from reclaim import metrics
from reclaim.config import ReclaimConfig
from reclaim.errors import (
    AlreadySettled,
    InsufficientBalance,
    InvalidAmount,
    InvalidInput,
    NotMarked,
    ReclaimError,
    Unauthorized,
)
from reclaim.events import EventKind
from reclaim.service import ReclaimService
from reclaim.tests import ALICE, BOB, CAROL, OWNER, SPONSOR, FakeClock


def test_end_to_end_cleanup_and_reward(svc, sink):
    svc.write_account_data(ALICE, b"profile")
    svc.mark(ALICE, ALICE, "blue-fox")
    assert svc.is_marked(ALICE)
    assert svc.cleanup_count() == 1

    svc.confirm(ALICE, ALICE, "blue-fox")
    assert svc.get_account(ALICE) is None
    assert svc.cleanup_count() == 0

    receipt = svc.report_cleanup(BOB, 1)
    svc.fund(SPONSOR, 10_000)
    paid = svc.claim_session(BOB, receipt.session_id)
    assert paid.amount == 100
    assert sink.total_to(BOB) == 100

    pool = svc.get_pool_stats()
    assert pool.balance == 9_900
    assert pool.total_paid == 100
    assert pool.height == 6
    stats = svc.get_global_stats()
    assert stats["accounts_confirmed"] == 1
    assert stats["total_rewards_paid"] == 100


def test_height_and_events_advance_only_on_success(svc):
    svc.write_account_data(ALICE, "hello")
    assert svc.height == 1
    with pytest.raises(NotMarked):
        svc.cancel(ALICE, ALICE)
    with pytest.raises(InvalidAmount):
        svc.fund(SPONSOR, 0)
    assert svc.height == 1
    kinds = [e.kind for e in svc.events()]
    assert kinds == [EventKind.ACCOUNT_DATA_WRITTEN]


def test_failed_operation_counts_rejection(svc):
    labels = {"operation": "claim_rewards", "code": InsufficientBalance.code}
    before = metrics.REGISTRY.get_sample_value("reclaim_operations_rejected_total", labels) or 0
    with pytest.raises(InsufficientBalance):
        svc.claim_rewards(ALICE)
    assert metrics.REGISTRY.get_sample_value("reclaim_operations_rejected_total", labels) == before + 1


def test_events_carry_height_and_clock(cfg):
    svc = ReclaimService(cfg, clock=FakeClock(start=1_000, step=10))
    svc.write_account_data(ALICE, b"x")
    svc.mark(ALICE, ALICE, "c")
    ev = svc.events(kind=EventKind.CLEANUP_MARKED)
    assert len(ev) == 1
    assert ev[0].height == 2
    assert ev[0].ts == 1_010
    assert ev[0].data == {"account": ALICE, "marked_by": ALICE}
    assert [e.seq for e in svc.events(since_seq=1)] == [2]


@pytest.mark.parametrize("caller", ["", None, "x" * 129, 42])
def test_boundary_rejects_bad_identity(svc, caller):
    with pytest.raises(InvalidInput):
        svc.write_account_data(caller, b"p")
    assert svc.height == 0


def test_boundary_rejects_oversized_payload_and_code(cfg):
    cfg.limits.max_payload_bytes = 4
    cfg.limits.max_code_length = 3
    svc = ReclaimService(cfg)
    with pytest.raises(InvalidInput):
        svc.write_account_data(ALICE, b"12345")
    svc.write_account_data(ALICE, "1234")
    with pytest.raises(InvalidInput):
        svc.mark(ALICE, ALICE, "abcd")
    with pytest.raises(InvalidInput):
        svc.mark(ALICE, ALICE, "")
    assert not svc.is_marked(ALICE)


def test_owner_only_parameter_updates(svc):
    with pytest.raises(Unauthorized):
        svc.update_rate(ALICE, 5)
    with pytest.raises(InvalidAmount):
        svc.update_rate(OWNER, 0)
    assert svc.update_rate(OWNER, 5).rate == 5
    p = svc.update_bonus_settings(OWNER, 200, 3, "per_event")
    assert (p.bonus_multiplier, p.bonus_threshold, p.mode.value) == (200, 3, "per_event")
    with pytest.raises(InvalidAmount):
        svc.update_bonus_settings(OWNER, 99, 3)
    with pytest.raises(InvalidInput):
        svc.update_bonus_settings(OWNER, 150, 3, "weekly")
    assert svc.get_reward_settings() == p
    assert svc.report_cleanup(ALICE, 3).reward_amount == 30


def test_reporters_allow_list(cfg):
    cfg.reporters = (ALICE,)
    svc = ReclaimService(cfg)
    svc.report_cleanup(ALICE, 1)
    svc.report_cleanup(OWNER, 1)
    with pytest.raises(Unauthorized):
        svc.report_cleanup(BOB, 1)
    assert svc.get_user_stats(BOB).session_count == 0


def test_preview_uses_identity_history(svc):
    svc.report_cleanup(ALICE, 9)
    out = svc.preview_reward(2, identity=ALICE)
    assert out.bonus_applied and out.total == 300
    assert svc.preview_reward(2).total == 200
    assert svc.preview_reward(2, prior_cumulative=20).bonus == 100
    assert svc.height == 1


def test_aggregate_then_session_claim_cannot_double_pay(svc):
    svc.report_cleanup(ALICE, 2)
    svc.fund(SPONSOR, 1_000)
    svc.claim_rewards(ALICE)
    with pytest.raises(AlreadySettled):
        svc.claim_session(ALICE, 1)
    assert svc.get_pool_stats().total_paid == 200


def test_emergency_withdraw_event(svc, sink):
    svc.fund(SPONSOR, 500)
    svc.emergency_withdraw(OWNER, 200)
    assert sink.total_to(OWNER) == 200
    (ev,) = svc.events(kind=EventKind.EMERGENCY_WITHDRAWAL)
    assert ev.data == {"amount": 200, "balance": 300}


def test_admin_force_and_global_removed_counts(svc):
    svc.write_account_data(ALICE, b"a")
    svc.write_account_data(BOB, b"b")
    svc.mark(BOB, BOB, "c")
    with pytest.raises(Unauthorized):
        svc.admin_force(CAROL, ALICE)
    svc.admin_force(OWNER, ALICE)
    svc.admin_force(OWNER, BOB)
    assert svc.cleanup_count() == 0
    assert svc.get_global_stats()["accounts_forced"] == 2


def test_returned_records_are_copies(svc):
    rec = svc.write_account_data(ALICE, b"a")
    rec.payload = b"tampered"
    assert svc.get_account(ALICE).payload == b"a"


def test_dump_load_round_trip(svc, cfg):
    svc.write_account_data(ALICE, b"a")
    svc.mark(ALICE, ALICE, "c")
    svc.report_cleanup(BOB, 11)
    svc.fund(SPONSOR, 5_000)
    svc.claim_rewards(BOB)
    again = ReclaimService.load(cfg, svc.dump())
    assert again.dump() == svc.dump()
    assert again.height == svc.height
    again.confirm(ALICE, ALICE, "c")
    assert again.height == svc.height + 1


def test_load_refreshes_gauges(svc, cfg):
    svc.write_account_data(ALICE, b"a")
    svc.mark(ALICE, ALICE, "c")
    svc.fund(SPONSOR, 700)
    snap = svc.dump()
    metrics.TREASURY_BALANCE.set(-1)
    metrics.ACTIVE_MARKS.set(-1)
    ReclaimService.load(cfg, snap)
    assert metrics.REGISTRY.get_sample_value("reclaim_treasury_balance_units") == 700
    assert metrics.REGISTRY.get_sample_value("reclaim_active_cleanup_marks") == 1


def test_load_rejects_inconsistent_snapshot(svc, cfg):
    svc.report_cleanup(ALICE, 1)
    snap = svc.dump()
    snap["ledger"]["pending"][ALICE] = 999
    with pytest.raises(ReclaimError):
        ReclaimService.load(cfg, snap)


def test_config_without_owner_rejected():
    with pytest.raises(ValueError):
        ReclaimService(ReclaimConfig(owner=""))


def test_concurrent_claims_pay_once(svc, sink):
    for _ in range(5):
        svc.report_cleanup(ALICE, 1)
    svc.fund(SPONSOR, 10_000)
    errors = []

    def worker(sid):
        try:
            svc.claim_session(ALICE, sid)
        except AlreadySettled as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(sid,)) for sid in (1, 2, 3, 4, 5) * 4]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sink.total_to(ALICE) == 500
    assert len(errors) == 15
    svc.assert_consistent()
