from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from reclaim.adapters.state_db import ReclaimStateDB
from reclaim.cli.inspect import app
from reclaim.tests import ALICE, SPONSOR

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path, svc) -> str:
    svc.report_cleanup(ALICE, 9)
    svc.report_cleanup(ALICE, 2)
    svc.fund(SPONSOR, 1_000)
    svc.claim_session(ALICE, 1)
    path = str(tmp_path / "reclaim.db")
    with ReclaimStateDB(path) as db:
        db.save_service(svc)
    return path


def test_config_prints_effective_settings(monkeypatch):
    monkeypatch.setenv("RECLAIM_REWARD_RATE", "42")
    r = runner.invoke(app, ["config"])
    assert r.exit_code == 0, r.output
    assert json.loads(r.output)["rewards"]["rate"] == 42


def test_config_check_requires_owner():
    r = runner.invoke(app, ["config", "--check"])
    assert r.exit_code == 1


def test_preview_json():
    r = runner.invoke(app, ["preview", "2", "--prior", "9", "--json"])
    assert r.exit_code == 0, r.output
    out = json.loads(r.output)
    assert (out["base"], out["bonus"], out["total"]) == (200, 100, 300)
    assert out["params"]["rate"] == 100


def test_preview_overrides_and_errors():
    r = runner.invoke(app, ["preview", "3", "--rate", "5", "--mode", "per_event", "--threshold", "3"])
    assert r.exit_code == 0, r.output
    assert "total" in r.output and "22" in r.output
    assert runner.invoke(app, ["preview", "0"]).exit_code == 1
    assert runner.invoke(app, ["preview", "1", "--mode", "weekly"]).exit_code == 1


def test_pool_from_db(db_path):
    r = runner.invoke(app, ["pool", "--db", db_path, "--json"])
    assert r.exit_code == 0, r.output
    out = json.loads(r.output)
    assert out["balance"] == 100
    assert out["total_pending"] == 300


def test_user_and_sessions(db_path):
    r = runner.invoke(app, ["user", ALICE, "--db", db_path, "--json"])
    assert r.exit_code == 0, r.output
    out = json.loads(r.output)
    assert out["accounts_cleaned"] == 11 and out["pending"] == 300

    r = runner.invoke(app, ["sessions", ALICE, "--db", db_path, "--unsettled", "--json"])
    assert [s["session_id"] for s in json.loads(r.output)] == [2]

    r = runner.invoke(app, ["sessions", ALICE, "--db", db_path])
    assert r.exit_code == 0
    assert "Unsettled total: 300" in r.output


def test_unknown_identity_has_zero_stats(db_path):
    r = runner.invoke(app, ["user", "anim1nobody", "--db", db_path, "--json"])
    assert json.loads(r.output)["session_count"] == 0


def test_missing_db(tmp_path):
    r = runner.invoke(app, ["pool", "--db", str(tmp_path / "absent.db")])
    assert r.exit_code == 2
