"""
Reward Ledger — cleanup sessions, user stats and pending balances
-----------------------------------------------------------------

Records one `CleanupSession` per reward report and keeps two reconciled views
of what each identity is owed:

  • per-session: every session carries its computed reward and a settlement
    flag that flips false → true exactly once;
  • aggregate:   `pending_of(identity)` is the sum of that identity's
    unsettled session rewards.

Reporting is additive and never touches the treasury: a reported reward is a
claimable liability, not a transfer. Payout is the claim engine's job
(reclaim.treasury.claims), which calls the settlement hooks at the bottom of
this class while holding the treasury and ledger together.

Invariants (checked by `assert_consistent`)
  • pending[id] == sum(s.reward_amount for unsettled sessions of id)
  • session ids per reporter are 1..next_id-1 with no gaps
  • user counters never decrease

Amounts are integer base units; state is storage-agnostic with dump()/load().
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from threading import RLock
from typing import Dict, List, Optional, Tuple

from reclaim.economics.calculator import RewardParams, compute_with
from reclaim.errors import AlreadySettled, InvalidMetric, ReclaimError, SessionNotFound

log = logging.getLogger(__name__)

SessionKey = Tuple[str, int]


@dataclass
class CleanupSession:
    reporter: str
    session_id: int
    accounts_cleaned: int
    base: int
    bonus: int
    reward_amount: int
    bonus_applied: bool
    timestamp: int
    height: int
    settled: bool = False
    settled_at: Optional[int] = None
    settled_via: Optional[str] = None   # "session" | "distribute" | "aggregate"
    paid_to: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)

    @staticmethod
    def from_dict(d: Dict) -> "CleanupSession":
        return CleanupSession(
            reporter=str(d["reporter"]),
            session_id=int(d["session_id"]),
            accounts_cleaned=int(d["accounts_cleaned"]),
            base=int(d["base"]),
            bonus=int(d["bonus"]),
            reward_amount=int(d["reward_amount"]),
            bonus_applied=bool(d["bonus_applied"]),
            timestamp=int(d["timestamp"]),
            height=int(d["height"]),
            settled=bool(d.get("settled", False)),
            settled_at=d.get("settled_at"),
            settled_via=d.get("settled_via"),
            paid_to=d.get("paid_to"),
        )


@dataclass
class UserCleanupStats:
    identity: str
    accounts_cleaned: int = 0
    rewards_earned: int = 0
    rewards_claimed: int = 0
    session_count: int = 0
    last_activity: Optional[int] = None

    def to_dict(self) -> Dict:
        return asdict(self)

    @staticmethod
    def from_dict(d: Dict) -> "UserCleanupStats":
        return UserCleanupStats(
            identity=str(d["identity"]),
            accounts_cleaned=int(d.get("accounts_cleaned", 0)),
            rewards_earned=int(d.get("rewards_earned", 0)),
            rewards_claimed=int(d.get("rewards_claimed", 0)),
            session_count=int(d.get("session_count", 0)),
            last_activity=d.get("last_activity"),
        )


@dataclass
class GlobalStats:
    total_accounts_cleaned: int = 0
    total_sessions: int = 0
    total_rewards_accrued: int = 0
    total_rewards_paid: int = 0
    reporters: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class ReportReceipt:
    reporter: str
    session_id: int
    accounts_cleaned: int
    base: int
    bonus: int
    reward_amount: int
    bonus_applied: bool
    cumulative: int
    pending: int

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class _LedgerState:
    sessions: Dict[SessionKey, CleanupSession] = field(default_factory=dict)
    stats: Dict[str, UserCleanupStats] = field(default_factory=dict)
    pending: Dict[str, int] = field(default_factory=dict)
    next_session_id: Dict[str, int] = field(default_factory=dict)
    totals: GlobalStats = field(default_factory=GlobalStats)


class RewardLedger:
    """
    Session/stat/pending bookkeeping for cleanup rewards.

    Usage:
      ledger = RewardLedger(RewardParams(rate=100, bonus_multiplier=150, bonus_threshold=10))
      receipt = ledger.report_cleanup("anim1alice", 3, now=ts, height=h)
      ledger.pending_of("anim1alice")  # -> receipt.reward_amount
    """

    def __init__(self, params: RewardParams) -> None:
        params.validate()
        self._params = params
        self._st = _LedgerState()
        self._lock = RLock()

    @property
    def lock(self):
        """Ledger lock; the claim engine holds it for a whole claim."""
        return self._lock

    # --- parameters ---

    @property
    def params(self) -> RewardParams:
        return self._params

    def set_params(self, params: RewardParams) -> None:
        params.validate()
        with self._lock:
            self._params = params

    # --- persistence ---

    def dump(self) -> Dict:
        with self._lock:
            return {
                "sessions": [
                    s.to_dict() for _, s in sorted(self._st.sessions.items())
                ],
                "stats": {k: v.to_dict() for k, v in sorted(self._st.stats.items())},
                "pending": dict(sorted(self._st.pending.items())),
                "next_session_id": dict(sorted(self._st.next_session_id.items())),
                "totals": self._st.totals.to_dict(),
            }

    @classmethod
    def load(cls, params: RewardParams, data: Dict) -> "RewardLedger":
        ledger = cls(params)
        st = ledger._st
        for d in data.get("sessions") or []:
            s = CleanupSession.from_dict(d)
            st.sessions[(s.reporter, s.session_id)] = s
        st.stats = {str(k): UserCleanupStats.from_dict(v) for k, v in (data.get("stats") or {}).items()}
        st.pending = {str(k): int(v) for k, v in (data.get("pending") or {}).items()}
        st.next_session_id = {str(k): int(v) for k, v in (data.get("next_session_id") or {}).items()}
        st.totals = GlobalStats(**{k: int(v) for k, v in (data.get("totals") or {}).items()})
        ledger.assert_consistent()
        return ledger

    # --- queries ---

    def get_user_stats(self, identity: str) -> Optional[UserCleanupStats]:
        return self._st.stats.get(identity)

    def get_session(self, reporter: str, session_id: int) -> Optional[CleanupSession]:
        return self._st.sessions.get((reporter, int(session_id)))

    def list_sessions(self, reporter: str, *, unsettled_only: bool = False) -> List[CleanupSession]:
        with self._lock:
            out = [
                s for (r, _), s in self._st.sessions.items()
                if r == reporter and (not unsettled_only or not s.settled)
            ]
        out.sort(key=lambda s: s.session_id)
        return out

    def pending_of(self, identity: str) -> int:
        return int(self._st.pending.get(identity, 0))

    def total_pending(self) -> int:
        return sum(self._st.pending.values())

    def global_stats(self) -> GlobalStats:
        return GlobalStats(**self._st.totals.to_dict())

    def peek_next_session_id(self, reporter: str) -> int:
        return self._st.next_session_id.get(reporter, 1)

    # --- reporting ---

    def report_cleanup(self, reporter: str, accounts_cleaned: int, *, now: int, height: int) -> ReportReceipt:
        """
        Record a cleanup report and accrue its reward to the reporter's pending balance.

        Raises:
            InvalidMetric: accounts_cleaned is zero, negative or not an int.
        """
        if isinstance(accounts_cleaned, bool) or not isinstance(accounts_cleaned, int) or accounts_cleaned <= 0:
            raise InvalidMetric(
                "accounts_cleaned must be a positive integer",
                details={"accounts_cleaned": accounts_cleaned},
            )
        with self._lock:
            st = self._st
            prior_stats = st.stats.get(reporter)
            prior = prior_stats.accounts_cleaned if prior_stats else 0
            breakdown = compute_with(self._params, accounts_cleaned, prior)

            sid = st.next_session_id.get(reporter, 1)
            session = CleanupSession(
                reporter=reporter,
                session_id=sid,
                accounts_cleaned=accounts_cleaned,
                base=breakdown.base,
                bonus=breakdown.bonus,
                reward_amount=breakdown.total,
                bonus_applied=breakdown.bonus_applied,
                timestamp=now,
                height=height,
            )

            # commit
            st.next_session_id[reporter] = sid + 1
            st.sessions[(reporter, sid)] = session
            stats = prior_stats or UserCleanupStats(identity=reporter)
            if prior_stats is None:
                st.stats[reporter] = stats
                st.totals.reporters += 1
            stats.accounts_cleaned += accounts_cleaned
            stats.rewards_earned += breakdown.total
            stats.session_count += 1
            stats.last_activity = now
            st.pending[reporter] = st.pending.get(reporter, 0) + breakdown.total
            st.totals.total_accounts_cleaned += accounts_cleaned
            st.totals.total_sessions += 1
            st.totals.total_rewards_accrued += breakdown.total

            log.info(
                "ledger: reported reporter=%s session=%d cleaned=%d reward=%d bonus=%s",
                reporter, sid, accounts_cleaned, breakdown.total, breakdown.bonus_applied,
            )
            return ReportReceipt(
                reporter=reporter,
                session_id=sid,
                accounts_cleaned=accounts_cleaned,
                base=breakdown.base,
                bonus=breakdown.bonus,
                reward_amount=breakdown.total,
                bonus_applied=breakdown.bonus_applied,
                cumulative=stats.accounts_cleaned,
                pending=st.pending[reporter],
            )

    # --- settlement hooks (claim engine only) ---

    def require_unsettled(self, reporter: str, session_id: int) -> CleanupSession:
        s = self.get_session(reporter, session_id)
        if s is None:
            raise SessionNotFound(reporter, session_id)
        if s.settled:
            raise AlreadySettled(reporter, session_id)
        return s

    def settle_session(self, reporter: str, session_id: int, *, paid_to: str, via: str, now: int) -> CleanupSession:
        """Flip a session to settled and reduce pending by min(pending, reward)."""
        with self._lock:
            s = self.require_unsettled(reporter, session_id)
            s.settled = True
            s.settled_at = now
            s.settled_via = via
            s.paid_to = paid_to
            self.reduce_pending(reporter, s.reward_amount)
            self.record_claimed(reporter, s.reward_amount)
            return s

    def unsettled_total(self, reporter: str) -> int:
        with self._lock:
            return sum(s.reward_amount for s in self.list_sessions(reporter, unsettled_only=True))

    def settle_all_unsettled(self, reporter: str, *, expected: int, now: int) -> Tuple[int, List[int]]:
        """
        Settle the aggregate: zero pending and mark every unsettled session of
        `reporter` as settled via "aggregate". Returns (amount, session_ids).

        `expected` is the amount already paid out; nothing changes unless both
        the pending balance and the unsettled sessions add up to it.
        """
        with self._lock:
            amount = self.pending_of(reporter)
            unsettled = self.unsettled_total(reporter)
            if amount != expected or unsettled != expected:
                raise ReclaimError(
                    "aggregate settlement does not match the paid amount",
                    details={"identity": reporter, "expected": expected, "pending": amount, "unsettled": unsettled},
                )
            ids: List[int] = []
            for s in self.list_sessions(reporter, unsettled_only=True):
                s.settled = True
                s.settled_at = now
                s.settled_via = "aggregate"
                s.paid_to = reporter
                ids.append(s.session_id)
            self._st.pending[reporter] = 0
            self.record_claimed(reporter, amount)
            return amount, ids

    def reduce_pending(self, identity: str, amount: int) -> int:
        """Decrement pending by min(pending, amount); returns the amount removed."""
        with self._lock:
            current = self._st.pending.get(identity, 0)
            taken = min(current, amount)
            self._st.pending[identity] = current - taken
            return taken

    def record_claimed(self, identity: str, amount: int) -> None:
        stats = self._st.stats.get(identity)
        if stats is not None:
            stats.rewards_claimed += amount
        self._st.totals.total_rewards_paid += amount

    # --- utilities ---

    def assert_consistent(self) -> None:
        with self._lock:
            unsettled: Dict[str, int] = {}
            for (reporter, _), s in self._st.sessions.items():
                if not s.settled:
                    unsettled[reporter] = unsettled.get(reporter, 0) + s.reward_amount
            for ident in set(unsettled) | set(self._st.pending):
                if unsettled.get(ident, 0) != self._st.pending.get(ident, 0):
                    raise ReclaimError(
                        "pending balance does not match unsettled sessions",
                        details={
                            "identity": ident,
                            "pending": self._st.pending.get(ident, 0),
                            "unsettled": unsettled.get(ident, 0),
                        },
                    )
            for reporter, nxt in self._st.next_session_id.items():
                ids = sorted(sid for (r, sid) in self._st.sessions if r == reporter)
                if ids != list(range(1, nxt)):
                    raise ReclaimError("session ids are not contiguous", details={"reporter": reporter})


__all__ = [
    "CleanupSession",
    "UserCleanupStats",
    "GlobalStats",
    "ReportReceipt",
    "RewardLedger",
]
