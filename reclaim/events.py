"""
Events emitted by committed state transitions.

Each successful mutating operation appends exactly one `Event` to the
service's `EventLog`; failed operations append nothing. Events are plain
dataclasses with JSON-serializable fields so RPC layers and audit tooling can
forward them without conversion.

Event kinds:
  - AccountDataWritten, CleanupMarked, CleanupCancelled, CleanupConfirmed,
    CleanupForced                    (cleanup registry)
  - CleanupReported                  (reward ledger)
  - RewardsClaimed, SessionSettled   (claim engine)
  - TreasuryFunded, EmergencyWithdrawal
  - RateUpdated, BonusSettingsUpdated
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from threading import RLock
from typing import Any, Dict, List, Mapping, Optional, Tuple


class EventKind(str, Enum):
    ACCOUNT_DATA_WRITTEN = "AccountDataWritten"
    CLEANUP_MARKED = "CleanupMarked"
    CLEANUP_CANCELLED = "CleanupCancelled"
    CLEANUP_CONFIRMED = "CleanupConfirmed"
    CLEANUP_FORCED = "CleanupForced"
    CLEANUP_REPORTED = "CleanupReported"
    REWARDS_CLAIMED = "RewardsClaimed"
    SESSION_SETTLED = "SessionSettled"
    TREASURY_FUNDED = "TreasuryFunded"
    EMERGENCY_WITHDRAWAL = "EmergencyWithdrawal"
    RATE_UPDATED = "RateUpdated"
    BONUS_SETTINGS_UPDATED = "BonusSettingsUpdated"


@dataclass(frozen=True)
class Event:
    seq: int
    kind: EventKind
    height: int
    ts: int
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "kind": self.kind.value,
            "height": self.height,
            "ts": self.ts,
            "data": dict(self.data),
        }

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "Event":
        return Event(
            seq=int(d["seq"]),
            kind=EventKind(d["kind"]),
            height=int(d["height"]),
            ts=int(d["ts"]),
            data=dict(d.get("data") or {}),
        )


class EventLog:
    """Append-only, in-memory event log with a monotonic sequence number."""

    def __init__(self) -> None:
        self._events: List[Event] = []
        self._lock = RLock()

    def emit(self, kind: EventKind, *, height: int, ts: int, **data: Any) -> Event:
        with self._lock:
            ev = Event(seq=len(self._events) + 1, kind=kind, height=height, ts=ts, data=data)
            self._events.append(ev)
            return ev

    def list(self, *, kind: Optional[EventKind] = None, since_seq: int = 0) -> Tuple[Event, ...]:
        with self._lock:
            return tuple(
                e for e in self._events
                if e.seq > since_seq and (kind is None or e.kind == kind)
            )

    def __len__(self) -> int:
        return len(self._events)

    def dump(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [e.to_dict() for e in self._events]

    @classmethod
    def load(cls, data: List[Mapping[str, Any]]) -> "EventLog":
        log = cls()
        log._events = [Event.from_dict(d) for d in data]
        return log


__all__ = ["EventKind", "Event", "EventLog"]
