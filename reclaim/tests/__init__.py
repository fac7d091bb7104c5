from __future__ import annotations
"""
Reclaim test suite package.

Shared identities and a controllable clock used across the reclaim tests.
"""


OWNER = "anim1owner"
ALICE = "anim1alice"
BOB = "anim1bob"
CAROL = "anim1carol"
SPONSOR = "anim1sponsor"


class FakeClock:
    """Deterministic clock: returns `t` and advances by `step` per call."""

    def __init__(self, start: int = 1_700_000_000, step: int = 1) -> None:
        self.t = start
        self.step = step

    def __call__(self) -> int:
        now = self.t
        self.t += self.step
        return now


__all__ = ["OWNER", "ALICE", "BOB", "CAROL", "SPONSOR", "FakeClock"]
