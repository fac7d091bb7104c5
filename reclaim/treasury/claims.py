"""
Claim/Distribution Engine
-------------------------

Pays ledger liabilities out of the treasury with at-most-once semantics.

Two claim paths over the same ledger:

  • claim_rewards(caller)            — aggregate: pays the caller's whole pending
                                        balance and settles every unsettled
                                        session of the caller.
  • claim_session(caller, sid)       — one session of the caller, paid to the caller.
    distribute(caller, target, sid)  — owner pays one session of `target` to `target`.

Per-session payouts reduce the pending balance by min(pending, reward) so the
aggregate view never over-counts after mixed usage. Every precondition is
checked before the treasury or ledger is touched; the debit happens before the
ledger is updated and cannot fail once the checks pass.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
import contextlib
from typing import Dict, Iterator, List

from reclaim.access import AccessGuard
from reclaim.economics.ledger import RewardLedger
from reclaim.errors import InsufficientBalance, InsufficientFunds, ReclaimError
from reclaim.treasury.state import Treasury

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClaimReceipt:
    identity: str
    amount: int
    path: str                                  # "aggregate" | "session" | "distribute"
    session_ids: List[int] = field(default_factory=list)
    treasury_balance: int = 0
    pending_after: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


class ClaimEngine:
    """Couples one ledger and one treasury; a claim holds both of their locks."""

    def __init__(self, guard: AccessGuard, ledger: RewardLedger, treasury: Treasury) -> None:
        self._guard = guard
        self.ledger = ledger
        self.treasury = treasury

    @contextlib.contextmanager
    def _locked(self) -> Iterator[None]:
        # Always ledger first, then treasury.
        with self.ledger.lock, self.treasury.lock:
            yield

    def claim_rewards(self, caller: str, *, now: int, height: int) -> ClaimReceipt:
        with self._locked():
            pending = self.ledger.pending_of(caller)
            available = self.treasury.balance
            if pending <= 0 or not self.treasury.can_cover(pending):
                raise InsufficientBalance(identity=caller, pending=pending, available=available)
            unsettled = self.ledger.unsettled_total(caller)
            if unsettled != pending:
                raise ReclaimError(
                    "pending balance does not match unsettled sessions",
                    details={"identity": caller, "pending": pending, "unsettled": unsettled},
                )

            self.treasury.debit(pending, to=caller, height=height, reason="claim_rewards")
            amount, ids = self.ledger.settle_all_unsettled(caller, expected=pending, now=now)
            log.info("claims: aggregate identity=%s amount=%d sessions=%s", caller, amount, ids)
            return ClaimReceipt(
                identity=caller,
                amount=amount,
                path="aggregate",
                session_ids=ids,
                treasury_balance=self.treasury.balance,
                pending_after=self.ledger.pending_of(caller),
            )

    def claim_session(self, caller: str, session_id: int, *, now: int, height: int) -> ClaimReceipt:
        with self._locked():
            return self._settle_one(caller, session_id, path="session", now=now, height=height)

    def distribute(self, caller: str, target: str, session_id: int, *, now: int, height: int) -> ClaimReceipt:
        with self._locked():
            self._guard.require_owner(caller)
            return self._settle_one(target, session_id, path="distribute", now=now, height=height)

    def _settle_one(self, target: str, session_id: int, *, path: str, now: int, height: int) -> ClaimReceipt:
        session = self.ledger.require_unsettled(target, session_id)
        amount = session.reward_amount
        if not self.treasury.can_cover(amount):
            raise InsufficientFunds(requested=amount, available=self.treasury.balance)

        self.treasury.debit(amount, to=target, height=height, reason=f"{path}:{session_id}")
        self.ledger.settle_session(target, session_id, paid_to=target, via=path, now=now)
        log.info("claims: %s identity=%s session=%d amount=%d", path, target, session_id, amount)
        return ClaimReceipt(
            identity=target,
            amount=amount,
            path=path,
            session_ids=[session_id],
            treasury_balance=self.treasury.balance,
            pending_after=self.ledger.pending_of(target),
        )


__all__ = ["ClaimReceipt", "ClaimEngine"]
