from __future__ import annotations

import os

import pytest

from reclaim.access import AccessGuard
from reclaim.config import ReclaimConfig, RewardSettings
from reclaim.service import ReclaimService
from reclaim.tests import OWNER, FakeClock
from reclaim.treasury.state import RecordingSink


@pytest.fixture(autouse=True)
def _clean_reclaim_env(monkeypatch):
    # Keep the developer's RECLAIM_* settings out of config tests.
    for k in list(os.environ):
        if k.startswith("RECLAIM_"):
            monkeypatch.delenv(k, raising=False)


@pytest.fixture
def guard() -> AccessGuard:
    return AccessGuard(OWNER)


@pytest.fixture
def cfg() -> ReclaimConfig:
    """rate 100, threshold 10, multiplier 150% (cumulative)."""
    return ReclaimConfig(
        owner=OWNER,
        rewards=RewardSettings(rate=100, bonus_multiplier=150, bonus_threshold=10),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def svc(cfg, clock, sink) -> ReclaimService:
    return ReclaimService(cfg, clock=clock, sink=sink)
