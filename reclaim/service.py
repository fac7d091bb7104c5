"""
reclaim.service
---------------

`ReclaimService` is the single owning instance of all cleanup and reward
state for a deployment. It wires the components together, validates
structural input at the boundary, and serializes every operation under one
`threading.RLock` so concurrent callers observe a strict total order:

    caller ─▶ ReclaimService ─┬─▶ CleanupRegistry     (mark/cancel/confirm/force)
                              ├─▶ RewardLedger        (report_cleanup)
                              ├─▶ ClaimEngine ─▶ Treasury + RewardLedger
                              └─▶ Treasury            (fund / emergency_withdraw)

Each committed mutation advances a logical `height` by one and appends one
event; a failed operation raises a `ReclaimError`, advances nothing and leaves
every component unchanged.

The caller identity is an explicit first argument to every operation. The
transport layers (reclaim.rpc) are responsible for establishing it.

Usage:
    svc = ReclaimService(ReclaimConfig(owner="anim1owner"))
    svc.write_account_data("anim1alice", b"profile")
    svc.mark("anim1alice", "anim1alice", "blue-fox")
    svc.confirm("anim1alice", "anim1alice", "blue-fox")
    receipt = svc.report_cleanup("anim1alice", 1)
    svc.fund("anim1sponsor", 10_000)
    svc.claim_session("anim1alice", receipt.session_id)
"""
from __future__ import annotations

import contextlib
import dataclasses
import logging
import time
from dataclasses import asdict, dataclass
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from reclaim import metrics
from reclaim.access import AccessGuard
from reclaim.cleanup.registry import AccountRecord, CleanupMark, CleanupRegistry
from reclaim.config import ReclaimConfig, RewardSettings
from reclaim.economics.calculator import BonusMode, RewardBreakdown, RewardParams, compute_with
from reclaim.economics.ledger import CleanupSession, ReportReceipt, RewardLedger, UserCleanupStats
from reclaim.errors import InvalidInput, ReclaimError
from reclaim.events import Event, EventKind, EventLog
from reclaim.treasury.claims import ClaimEngine, ClaimReceipt
from reclaim.treasury.state import PayoutSink, Treasury, TreasuryEntry

log = logging.getLogger(__name__)

Clock = Callable[[], int]
Payload = Union[bytes, str]


def _system_clock() -> int:
    return int(time.time())


def params_from_settings(settings: RewardSettings) -> RewardParams:
    return RewardParams(
        rate=settings.rate,
        bonus_multiplier=settings.bonus_multiplier,
        bonus_threshold=settings.bonus_threshold,
        mode=BonusMode.parse(settings.bonus_mode),
    )


@dataclass(frozen=True)
class _Tick:
    now: int
    height: int


@dataclass(frozen=True)
class PoolStats:
    balance: int
    total_funded: int
    total_paid: int
    total_pending: int
    active_marks: int
    height: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ReclaimService:
    def __init__(
        self,
        config: ReclaimConfig,
        *,
        clock: Optional[Clock] = None,
        sink: Optional[PayoutSink] = None,
    ) -> None:
        config.validate()
        self.config = config
        self.guard = AccessGuard(config.owner)
        self.registry = CleanupRegistry(self.guard)
        self.ledger = RewardLedger(params_from_settings(config.rewards))
        self.treasury = Treasury(self.guard, fund_owner_only=config.treasury.fund_owner_only, sink=sink)
        self.claims = ClaimEngine(self.guard, self.ledger, self.treasury)
        self.event_log = EventLog()
        self._clock: Clock = clock or _system_clock
        self._height = 0
        self._lock = RLock()

    # ------------------------------------------------------------------ infra

    @property
    def owner(self) -> str:
        return self.guard.owner

    @property
    def height(self) -> int:
        return self._height

    @contextlib.contextmanager
    def _op(self, name: str) -> Iterator[_Tick]:
        """Run one operation atomically; commit the height only on success."""
        with self._lock:
            tick = _Tick(now=int(self._clock()), height=self._height + 1)
            try:
                yield tick
            except ReclaimError as e:
                metrics.OPERATIONS_REJECTED.labels(operation=name, code=e.code).inc()
                log.debug("service: %s rejected code=%s details=%s", name, e.code, e.details)
                raise
            self._height = tick.height

    def _emit(self, kind: EventKind, tick: _Tick, **data: Any) -> Event:
        return self.event_log.emit(kind, height=tick.height, ts=tick.now, **data)

    def _check_identity(self, value: Any, name: str) -> str:
        limit = self.config.limits.max_identity_length
        if not isinstance(value, str) or not value or len(value) > limit:
            raise InvalidInput(
                f"{name} must be a non-empty string of at most {limit} characters",
                details={"field": name},
            )
        return value

    def _check_payload(self, payload: Any) -> bytes:
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        if not isinstance(payload, (bytes, bytearray)):
            raise InvalidInput("payload must be bytes or str", details={"field": "payload"})
        limit = self.config.limits.max_payload_bytes
        if len(payload) > limit:
            raise InvalidInput(
                f"payload exceeds {limit} bytes",
                details={"field": "payload", "size": len(payload)},
            )
        return bytes(payload)

    def _check_code(self, code: Any) -> Union[str, bytes]:
        raw = code.encode("utf-8") if isinstance(code, str) else code
        limit = self.config.limits.max_code_length
        if not isinstance(raw, (bytes, bytearray)) or not raw or len(raw) > limit:
            raise InvalidInput(
                f"confirmation code must be 1..{limit} bytes",
                details={"field": "confirmation_code"},
            )
        return code

    def _check_session_id(self, session_id: Any) -> int:
        if isinstance(session_id, bool) or not isinstance(session_id, int) or session_id <= 0:
            raise InvalidInput("session_id must be a positive integer", details={"field": "session_id"})
        return session_id

    # --------------------------------------------------------- cleanup registry

    def write_account_data(self, caller: str, payload: Payload) -> AccountRecord:
        with self._op("write_account_data") as tick:
            self._check_identity(caller, "caller")
            data = self._check_payload(payload)
            created = not self.registry.has_account(caller)
            rec = self.registry.write_account_data(caller, data, now=tick.now)
            self._emit(EventKind.ACCOUNT_DATA_WRITTEN, tick, account=caller, created=created, size=len(data))
            metrics.CLEANUP_TRANSITIONS.labels(action="write").inc()
            return dataclasses.replace(rec)

    def mark(self, caller: str, account: str, confirmation_code: Union[str, bytes]) -> CleanupMark:
        with self._op("mark") as tick:
            self._check_identity(caller, "caller")
            self._check_identity(account, "account")
            self._check_code(confirmation_code)
            mark = self.registry.mark(caller, account, confirmation_code, now=tick.now, height=tick.height)
            self._emit(EventKind.CLEANUP_MARKED, tick, account=account, marked_by=caller)
            metrics.CLEANUP_TRANSITIONS.labels(action="mark").inc()
            metrics.ACTIVE_MARKS.set(self.registry.cleanup_count())
            return mark

    def cancel(self, caller: str, account: str) -> CleanupMark:
        with self._op("cancel") as tick:
            self._check_identity(caller, "caller")
            self._check_identity(account, "account")
            mark = self.registry.cancel(caller, account)
            self._emit(EventKind.CLEANUP_CANCELLED, tick, account=account, cancelled_by=caller)
            metrics.CLEANUP_TRANSITIONS.labels(action="cancel").inc()
            metrics.ACTIVE_MARKS.set(self.registry.cleanup_count())
            return mark

    def confirm(self, caller: str, account: str, confirmation_code: Union[str, bytes]) -> AccountRecord:
        with self._op("confirm") as tick:
            self._check_identity(caller, "caller")
            self._check_identity(account, "account")
            self._check_code(confirmation_code)
            rec, mark = self.registry.confirm(caller, account, confirmation_code)
            self._emit(
                EventKind.CLEANUP_CONFIRMED, tick,
                account=account, confirmed_by=caller, marked_by=mark.marked_by,
            )
            metrics.CLEANUP_TRANSITIONS.labels(action="confirm").inc()
            metrics.ACTIVE_MARKS.set(self.registry.cleanup_count())
            return rec

    def admin_force(self, caller: str, account: str) -> AccountRecord:
        with self._op("admin_force") as tick:
            self._check_identity(caller, "caller")
            self._check_identity(account, "account")
            rec, mark = self.registry.admin_force(caller, account)
            self._emit(EventKind.CLEANUP_FORCED, tick, account=account, had_mark=mark is not None)
            metrics.CLEANUP_TRANSITIONS.labels(action="force").inc()
            metrics.ACTIVE_MARKS.set(self.registry.cleanup_count())
            return rec

    # ------------------------------------------------------------ reward ledger

    def report_cleanup(self, caller: str, accounts_cleaned: int) -> ReportReceipt:
        with self._op("report_cleanup") as tick:
            self._check_identity(caller, "caller")
            if self.config.reporters:
                self.guard.require_any_of(caller, (*self.config.reporters, self.owner))
            receipt = self.ledger.report_cleanup(caller, accounts_cleaned, now=tick.now, height=tick.height)
            self._emit(
                EventKind.CLEANUP_REPORTED, tick,
                reporter=caller,
                session_id=receipt.session_id,
                accounts_cleaned=receipt.accounts_cleaned,
                reward_amount=receipt.reward_amount,
                bonus_applied=receipt.bonus_applied,
            )
            metrics.CLEANUP_REPORTS.labels(bonus=str(receipt.bonus_applied).lower()).inc()
            metrics.REWARDS_ACCRUED.inc(receipt.reward_amount)
            return receipt

    # ----------------------------------------------------------------- claims

    def claim_rewards(self, caller: str) -> ClaimReceipt:
        with self._op("claim_rewards") as tick:
            self._check_identity(caller, "caller")
            receipt = self.claims.claim_rewards(caller, now=tick.now, height=tick.height)
            self._emit(
                EventKind.REWARDS_CLAIMED, tick,
                identity=caller, amount=receipt.amount, session_ids=list(receipt.session_ids),
            )
            metrics.observe_payout("aggregate", receipt.amount, self.treasury.balance)
            return receipt

    def claim_session(self, caller: str, session_id: int) -> ClaimReceipt:
        with self._op("claim_session") as tick:
            self._check_identity(caller, "caller")
            self._check_session_id(session_id)
            receipt = self.claims.claim_session(caller, session_id, now=tick.now, height=tick.height)
            self._emit_settled(tick, receipt, settled_by=caller)
            return receipt

    def distribute(self, caller: str, target: str, session_id: int) -> ClaimReceipt:
        with self._op("distribute") as tick:
            self._check_identity(caller, "caller")
            self._check_identity(target, "target")
            self._check_session_id(session_id)
            receipt = self.claims.distribute(caller, target, session_id, now=tick.now, height=tick.height)
            self._emit_settled(tick, receipt, settled_by=caller)
            return receipt

    def _emit_settled(self, tick: _Tick, receipt: ClaimReceipt, *, settled_by: str) -> None:
        self._emit(
            EventKind.SESSION_SETTLED, tick,
            identity=receipt.identity,
            session_id=receipt.session_ids[0],
            amount=receipt.amount,
            path=receipt.path,
            settled_by=settled_by,
        )
        metrics.observe_payout(receipt.path, receipt.amount, self.treasury.balance)

    # --------------------------------------------------------------- treasury

    def fund(self, caller: str, amount: int) -> TreasuryEntry:
        with self._op("fund") as tick:
            self._check_identity(caller, "caller")
            entry = self.treasury.fund(caller, amount, height=tick.height)
            self._emit(EventKind.TREASURY_FUNDED, tick, funder=caller, amount=amount, balance=entry.balance_after)
            metrics.TREASURY_FUNDED.inc(amount)
            metrics.TREASURY_BALANCE.set(self.treasury.balance)
            return entry

    def emergency_withdraw(self, caller: str, amount: int) -> TreasuryEntry:
        with self._op("emergency_withdraw") as tick:
            self._check_identity(caller, "caller")
            entry = self.treasury.emergency_withdraw(caller, amount, height=tick.height)
            self._emit(EventKind.EMERGENCY_WITHDRAWAL, tick, amount=amount, balance=entry.balance_after)
            metrics.observe_payout("emergency", amount, self.treasury.balance)
            return entry

    # ------------------------------------------------------ reward parameters

    def update_rate(self, caller: str, rate: int) -> RewardParams:
        with self._op("update_rate") as tick:
            self._check_identity(caller, "caller")
            self.guard.require_owner(caller)
            old = self.ledger.params
            new = dataclasses.replace(old, rate=rate)
            self.ledger.set_params(new)
            self._emit(EventKind.RATE_UPDATED, tick, old_rate=old.rate, new_rate=rate)
            log.info("service: reward rate %d -> %d", old.rate, rate)
            return new

    def update_bonus_settings(
        self,
        caller: str,
        bonus_multiplier: int,
        bonus_threshold: int,
        mode: Optional[Union[str, BonusMode]] = None,
    ) -> RewardParams:
        with self._op("update_bonus_settings") as tick:
            self._check_identity(caller, "caller")
            self.guard.require_owner(caller)
            old = self.ledger.params
            try:
                new_mode = old.mode if mode is None else BonusMode.parse(mode)
            except ValueError as e:
                raise InvalidInput(str(e), details={"field": "mode"}) from e
            new = dataclasses.replace(
                old,
                bonus_multiplier=bonus_multiplier,
                bonus_threshold=bonus_threshold,
                mode=new_mode,
            )
            self.ledger.set_params(new)
            self._emit(
                EventKind.BONUS_SETTINGS_UPDATED, tick,
                bonus_multiplier=bonus_multiplier,
                bonus_threshold=bonus_threshold,
                mode=new_mode.value,
            )
            log.info(
                "service: bonus settings multiplier=%d threshold=%d mode=%s",
                bonus_multiplier, bonus_threshold, new_mode.value,
            )
            return new

    # -------------------------------------------------------------- read-only

    def get_account(self, account: str) -> Optional[AccountRecord]:
        rec = self.registry.get_account(account)
        return dataclasses.replace(rec) if rec is not None else None

    def is_marked(self, account: str) -> bool:
        return self.registry.is_marked(account)

    def get_cleanup_info(self, account: str) -> Optional[CleanupMark]:
        return self.registry.get_mark(account)

    def cleanup_count(self) -> int:
        return self.registry.cleanup_count()

    def get_user_stats(self, identity: str) -> UserCleanupStats:
        stats = self.ledger.get_user_stats(identity)
        return dataclasses.replace(stats) if stats is not None else UserCleanupStats(identity=identity)

    def get_session(self, reporter: str, session_id: int) -> Optional[CleanupSession]:
        s = self.ledger.get_session(reporter, session_id)
        return dataclasses.replace(s) if s is not None else None

    def list_sessions(self, reporter: str, *, unsettled_only: bool = False) -> List[CleanupSession]:
        return [dataclasses.replace(s) for s in self.ledger.list_sessions(reporter, unsettled_only=unsettled_only)]

    def get_pending_reward(self, identity: str) -> int:
        return self.ledger.pending_of(identity)

    def get_reward_settings(self) -> RewardParams:
        return self.ledger.params

    def get_pool_stats(self) -> PoolStats:
        with self._lock:
            return PoolStats(
                balance=self.treasury.balance,
                total_funded=self.treasury.total_funded,
                total_paid=self.treasury.total_paid,
                total_pending=self.ledger.total_pending(),
                active_marks=self.registry.cleanup_count(),
                height=self._height,
            )

    def get_global_stats(self) -> Dict[str, int]:
        with self._lock:
            out = self.ledger.global_stats().to_dict()
            removed = self.registry.removed_counts()
            out["accounts_confirmed"] = removed.get("confirm", 0)
            out["accounts_forced"] = removed.get("force", 0)
            return out

    def preview_reward(
        self,
        accounts_cleaned: int,
        *,
        identity: Optional[str] = None,
        prior_cumulative: Optional[int] = None,
    ) -> RewardBreakdown:
        """
        Estimate the reward for a report without recording anything.

        The prior cumulative count is taken from `identity`'s stats unless given.
        """
        prior = prior_cumulative
        if prior is None:
            stats = self.ledger.get_user_stats(identity) if identity else None
            prior = stats.accounts_cleaned if stats else 0
        out = compute_with(self.ledger.params, accounts_cleaned, prior)
        log.debug("service: preview cleaned=%s prior=%d total=%d", accounts_cleaned, prior, out.total)
        return out

    def events(self, *, kind: Optional[EventKind] = None, since_seq: int = 0) -> Tuple[Event, ...]:
        return self.event_log.list(kind=kind, since_seq=since_seq)

    # ------------------------------------------------------------ persistence

    def dump(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "height": self._height,
                "params": self.ledger.params.to_dict(),
                "registry": self.registry.dump(),
                "ledger": self.ledger.dump(),
                "treasury": self.treasury.dump(),
                "events": self.event_log.dump(),
            }

    @classmethod
    def load(
        cls,
        config: ReclaimConfig,
        data: Dict[str, Any],
        *,
        clock: Optional[Clock] = None,
        sink: Optional[PayoutSink] = None,
    ) -> "ReclaimService":
        svc = cls(config, clock=clock, sink=sink)
        p = data.get("params") or {}
        params = RewardParams(
            rate=int(p.get("rate", svc.ledger.params.rate)),
            bonus_multiplier=int(p.get("bonus_multiplier", svc.ledger.params.bonus_multiplier)),
            bonus_threshold=int(p.get("bonus_threshold", svc.ledger.params.bonus_threshold)),
            mode=BonusMode.parse(p.get("mode", svc.ledger.params.mode)),
        )
        svc.registry = CleanupRegistry.load(svc.guard, data.get("registry") or {})
        svc.ledger = RewardLedger.load(params, data.get("ledger") or {})
        svc.treasury = Treasury.load(
            svc.guard,
            data.get("treasury") or {},
            fund_owner_only=config.treasury.fund_owner_only,
            sink=sink,
        )
        svc.claims = ClaimEngine(svc.guard, svc.ledger, svc.treasury)
        svc.event_log = EventLog.load(data.get("events") or [])
        svc._height = int(data.get("height", 0))
        svc.assert_consistent()
        metrics.TREASURY_BALANCE.set(svc.treasury.balance)
        metrics.ACTIVE_MARKS.set(svc.registry.cleanup_count())
        return svc

    def assert_consistent(self) -> None:
        """Verify cross-component invariants (counter, conservation, pending)."""
        with self._lock:
            self.registry.assert_consistent()
            self.ledger.assert_consistent()
            self.treasury.assert_consistent()
            stats = self.ledger.global_stats()
            if stats.total_rewards_paid > self.treasury.total_paid:
                raise ReclaimError(
                    "ledger paid more rewards than the treasury disbursed",
                    details={"ledger_paid": stats.total_rewards_paid, "treasury_paid": self.treasury.total_paid},
                )


__all__ = ["ReclaimService", "PoolStats", "params_from_settings"]
