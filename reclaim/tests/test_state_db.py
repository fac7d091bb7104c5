from __future__ import annotations

import sqlite3

import pytest

from reclaim.adapters.state_db import ReclaimStateDB, SchemaMismatch, open_default
from reclaim.tests import ALICE, BOB, OWNER, SPONSOR


@pytest.fixture
def db(tmp_path):
    d = ReclaimStateDB(str(tmp_path / "reclaim.db"))
    yield d
    d.close()


@pytest.fixture
def busy_svc(svc):
    svc.write_account_data(ALICE, b"\x00\x01payload")
    svc.write_account_data(BOB, b"bob")
    svc.mark(OWNER, BOB, "code-1")
    svc.report_cleanup(ALICE, 9)
    svc.report_cleanup(ALICE, 2)
    svc.report_cleanup(BOB, 1)
    svc.fund(SPONSOR, 2_000)
    svc.claim_session(ALICE, 2)
    return svc


def test_open_creates_schema_and_reopens(tmp_path):
    path = str(tmp_path / "fresh.db")
    with ReclaimStateDB(path) as d:
        assert d.is_empty()
    with ReclaimStateDB(path) as d:
        assert d.is_empty()
    raw = sqlite3.connect(path)
    try:
        version = raw.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()
        tables = {r[0] for r in raw.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    finally:
        raw.close()
    assert version == (str(ReclaimStateDB.SCHEMA_VERSION),)
    assert {"accounts", "marks", "sessions", "pending", "scalars"} <= tables


def test_empty_db_loads_fresh_service(db, cfg):
    assert db.is_empty()
    svc = db.load_service(cfg)
    assert svc.height == 0
    assert db.pool_summary()["balance"] == 0


def test_save_and_load_round_trip(db, busy_svc, cfg):
    db.save_service(busy_svc)
    again = db.load_service(cfg)
    assert again.dump() == busy_svc.dump()
    # Loaded marks still verify their code.
    again.confirm(BOB, BOB, "code-1")
    assert again.get_account(BOB) is None


def test_save_replaces_previous_snapshot(db, busy_svc, cfg):
    db.save_service(busy_svc)
    busy_svc.claim_rewards(ALICE)
    db.save_service(busy_svc)
    assert db.load_service(cfg).dump() == busy_svc.dump()
    assert db.list_sessions(reporter=ALICE, unsettled_only=True) == []


def test_inspection_queries(db, busy_svc):
    db.save_service(busy_svc)
    sessions = db.list_sessions(reporter=ALICE)
    assert [s["session_id"] for s in sessions] == [1, 2]
    assert sessions[1]["settled"] and sessions[1]["settled_via"] == "session"
    assert [s["session_id"] for s in db.list_sessions(reporter=ALICE, unsettled_only=True)] == [1]
    assert db.get_pending(ALICE) == 900
    assert db.get_pending("anim1nobody") == 0
    assert db.get_user_stats(ALICE)["accounts_cleaned"] == 11
    assert db.get_user_stats("anim1nobody") is None

    pool = db.pool_summary()
    assert pool == {
        "balance": 1_700,
        "total_funded": 2_000,
        "total_paid": 300,
        "total_pending": 1_000,
        "active_marks": 1,
        "height": busy_svc.height,
    }
    assert [e["op"] for e in db.list_journal()] == ["payout", "fund"]


def test_failed_save_keeps_old_snapshot(db, busy_svc, cfg, monkeypatch):
    db.save_service(busy_svc)
    saved = db.load_snapshot()
    busy_svc.report_cleanup(BOB, 3)

    def broken_dump():
        snap = type(busy_svc).dump(busy_svc)
        snap["ledger"]["sessions"].append(dict(snap["ledger"]["sessions"][0]))  # duplicate key
        return snap

    monkeypatch.setattr(busy_svc, "dump", broken_dump)
    with pytest.raises(sqlite3.IntegrityError):
        db.save_service(busy_svc)
    assert db.load_snapshot() == saved


def test_schema_version_mismatch(tmp_path):
    path = str(tmp_path / "old.db")
    ReclaimStateDB(path).close()
    raw = sqlite3.connect(path)
    raw.execute("UPDATE meta SET value='99' WHERE key='schema_version'")
    raw.commit()
    raw.close()
    with pytest.raises(SchemaMismatch):
        ReclaimStateDB(path)


def test_open_default_uses_env_path(tmp_path, monkeypatch, busy_svc):
    path = tmp_path / "from-env.db"
    monkeypatch.setenv("RECLAIM_DB", str(path))
    with open_default() as d:
        d.save_service(busy_svc)
    assert path.exists()
    with ReclaimStateDB(str(path)) as d:
        assert d.get_pending(BOB) == 100
