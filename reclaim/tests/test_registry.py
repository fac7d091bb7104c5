from __future__ import annotations

import pytest

from reclaim.cleanup.registry import CleanupRegistry, commit_code
from reclaim.errors import (
    AccountNotFound,
    AlreadyMarked,
    ConfirmationMismatch,
    NotMarked,
    Unauthorized,
)
from reclaim.tests import ALICE, BOB, CAROL, OWNER


@pytest.fixture
def reg(guard) -> CleanupRegistry:
    r = CleanupRegistry(guard)
    r.write_account_data(ALICE, b"alice-profile", now=100)
    r.write_account_data(BOB, b"bob-profile", now=101)
    return r


def test_write_sets_created_at_once(reg):
    rec = reg.write_account_data(ALICE, b"v2", now=200)
    assert rec.created_at == 100
    assert rec.last_modified == 200
    assert reg.get_account(ALICE).payload == b"v2"


def test_mark_confirm_round_trip(reg):
    reg.mark(ALICE, ALICE, "blue-fox", now=110, height=1)
    assert reg.is_marked(ALICE)
    assert reg.cleanup_count() == 1

    rec, mark = reg.confirm(ALICE, ALICE, "blue-fox")
    assert rec.account == ALICE
    assert mark.marked_by == ALICE
    assert reg.get_account(ALICE) is None
    assert not reg.is_marked(ALICE)
    assert reg.cleanup_count() == 0
    assert reg.removed_counts() == {"confirm": 1, "force": 0}


def test_confirm_mismatch_leaves_state_unchanged(reg):
    reg.mark(ALICE, ALICE, "blue-fox", now=110, height=1)
    before = reg.dump()
    with pytest.raises(ConfirmationMismatch):
        reg.confirm(ALICE, ALICE, "Blue-Fox")
    with pytest.raises(ConfirmationMismatch):
        reg.confirm(ALICE, ALICE, "blue-fox ")
    assert reg.dump() == before


def test_code_stored_as_commitment(reg):
    mark = reg.mark(ALICE, ALICE, "blue-fox", now=110, height=1)
    assert mark.code_commitment == commit_code("blue-fox")
    assert "blue-fox" not in str(reg.dump())
    assert mark.matches(b"blue-fox")


def test_mark_precondition_order(reg):
    # AlreadyMarked wins over authorization.
    reg.mark(ALICE, ALICE, "c", now=1, height=1)
    with pytest.raises(AlreadyMarked):
        reg.mark(CAROL, ALICE, "c", now=2, height=2)
    # AccountNotFound before authorization.
    with pytest.raises(AccountNotFound):
        reg.mark(CAROL, "anim1ghost", "c", now=2, height=2)
    with pytest.raises(Unauthorized):
        reg.mark(CAROL, BOB, "c", now=2, height=2)
    assert reg.cleanup_count() == 1


def test_owner_may_mark_any_account(reg):
    mark = reg.mark(OWNER, BOB, "admin-code", now=5, height=3)
    assert mark.marked_by == OWNER
    assert reg.list_marked() == [mark]


def test_cancel_by_marker(reg):
    reg.mark(OWNER, BOB, "code", now=5, height=1)
    with pytest.raises(Unauthorized):
        reg.cancel(CAROL, BOB)
    reg.cancel(OWNER, BOB)
    assert not reg.is_marked(BOB)
    assert reg.get_account(BOB) is not None
    assert reg.cleanup_count() == 0


def test_cancel_and_confirm_require_mark(reg):
    with pytest.raises(NotMarked):
        reg.cancel(ALICE, ALICE)
    with pytest.raises(NotMarked):
        reg.confirm(ALICE, ALICE, "x")


def test_marker_may_confirm(reg):
    reg.mark(OWNER, BOB, "code", now=5, height=1)
    with pytest.raises(Unauthorized):
        reg.confirm(CAROL, BOB, "code")
    reg.confirm(BOB, BOB, "code")
    assert not reg.has_account(BOB)


def test_admin_force_without_mark(reg):
    rec, mark = reg.admin_force(OWNER, ALICE)
    assert rec.account == ALICE
    assert mark is None
    assert reg.get_account(ALICE) is None
    assert reg.cleanup_count() == 0


def test_admin_force_with_mark_decrements_counter(reg):
    reg.mark(ALICE, ALICE, "c", now=1, height=1)
    reg.mark(BOB, BOB, "c", now=1, height=2)
    _, mark = reg.admin_force(OWNER, ALICE)
    assert mark is not None
    assert reg.cleanup_count() == 1
    assert reg.removed_counts()["force"] == 1


def test_admin_force_checks(reg):
    with pytest.raises(Unauthorized):
        reg.admin_force(ALICE, ALICE)
    with pytest.raises(AccountNotFound):
        reg.admin_force(OWNER, "anim1ghost")


def test_dump_load_round_trip(reg, guard):
    reg.mark(ALICE, ALICE, "c", now=1, height=1)
    reg.admin_force(OWNER, BOB)
    again = CleanupRegistry.load(guard, reg.dump())
    assert again.dump() == reg.dump()
    assert again.get_mark(ALICE).matches("c")
