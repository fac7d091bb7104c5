"""
Cleanup Registry — account records and cleanup marks
----------------------------------------------------

Holds the per-account data records and the marked-for-cleanup state, and
implements the cleanup state machine:

    NoRecord ──write──▶ HasRecord{Unmarked} ──mark──▶ HasRecord{Marked}
                              ▲                          │   │
                              └─────────cancel───────────┘   │ confirm (code match)
                                                             ▼
    HasRecord{*} ──────────────admin_force──────────────▶ NoRecord

Invariants
  • At most one active mark per account.
  • `cleanup_count()` == number of live marks, after any sequence of operations.
  • A mark only exists for an account that has a record.
  • Every precondition is checked before any mutation; a failed call leaves the
    registry untouched.

Confirmation codes are never stored in clear. `mark` keeps a SHA3-256
commitment of the code and `confirm` compares the digest of the supplied code
against it (exact bytes, no normalization, constant-time compare).

Concurrency: a coarse `threading.RLock` protects mutating methods; the service
layer wraps calls in its own lock to get a total order across components.
"""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from hashlib import sha3_256
from threading import RLock
from typing import Dict, List, Optional, Tuple, Union

from reclaim.access import AccessGuard
from reclaim.errors import (
    AccountNotFound,
    AlreadyMarked,
    ConfirmationMismatch,
    NotMarked,
    ReclaimError,
)

log = logging.getLogger(__name__)

Code = Union[str, bytes]


def commit_code(code: Code) -> str:
    """Hex SHA3-256 commitment of a confirmation code (str is UTF-8 encoded as-is)."""
    raw = code.encode("utf-8") if isinstance(code, str) else bytes(code)
    return sha3_256(b"reclaim/confirm/v1|" + raw).hexdigest()


@dataclass
class AccountRecord:
    account: str
    payload: bytes
    created_at: int
    last_modified: int

    def to_dict(self) -> Dict:
        return {
            "account": self.account,
            "payload": self.payload.hex(),
            "created_at": self.created_at,
            "last_modified": self.last_modified,
        }

    @staticmethod
    def from_dict(d: Dict) -> "AccountRecord":
        return AccountRecord(
            account=str(d["account"]),
            payload=bytes.fromhex(d.get("payload", "")),
            created_at=int(d["created_at"]),
            last_modified=int(d["last_modified"]),
        )


@dataclass(frozen=True)
class CleanupMark:
    account: str
    marked_by: str
    marked_at: int
    marked_height: int
    code_commitment: str

    def to_dict(self) -> Dict:
        return {
            "account": self.account,
            "marked_by": self.marked_by,
            "marked_at": self.marked_at,
            "marked_height": self.marked_height,
            "code_commitment": self.code_commitment,
        }

    @staticmethod
    def from_dict(d: Dict) -> "CleanupMark":
        return CleanupMark(
            account=str(d["account"]),
            marked_by=str(d["marked_by"]),
            marked_at=int(d["marked_at"]),
            marked_height=int(d["marked_height"]),
            code_commitment=str(d["code_commitment"]),
        )

    def matches(self, code: Code) -> bool:
        return hmac.compare_digest(commit_code(code), self.code_commitment)


class CleanupRegistry:
    """
    In-memory registry of account records and cleanup marks.

    Storage-agnostic: `dump()` returns a JSON-friendly dict and `load()` restores
    one (see reclaim.adapters.state_db for SQLite persistence).
    """

    def __init__(self, guard: AccessGuard) -> None:
        self._guard = guard
        self._accounts: Dict[str, AccountRecord] = {}
        self._marks: Dict[str, CleanupMark] = {}
        self._counter = 0
        self._removed = {"confirm": 0, "force": 0}
        self._lock = RLock()

    # --- load/save ---

    def dump(self) -> Dict:
        with self._lock:
            return {
                "accounts": {k: v.to_dict() for k, v in sorted(self._accounts.items())},
                "marks": {k: v.to_dict() for k, v in sorted(self._marks.items())},
                "counter": self._counter,
                "removed": dict(self._removed),
            }

    @classmethod
    def load(cls, guard: AccessGuard, data: Dict) -> "CleanupRegistry":
        reg = cls(guard)
        for k, v in (data.get("accounts") or {}).items():
            reg._accounts[str(k)] = AccountRecord.from_dict(v)
        for k, v in (data.get("marks") or {}).items():
            reg._marks[str(k)] = CleanupMark.from_dict(v)
        reg._counter = int(data.get("counter", len(reg._marks)))
        for k, v in (data.get("removed") or {}).items():
            reg._removed[str(k)] = int(v)
        reg.assert_consistent()
        return reg

    # --- introspection ---

    def get_account(self, account: str) -> Optional[AccountRecord]:
        return self._accounts.get(account)

    def has_account(self, account: str) -> bool:
        return account in self._accounts

    def get_mark(self, account: str) -> Optional[CleanupMark]:
        return self._marks.get(account)

    def is_marked(self, account: str) -> bool:
        return account in self._marks

    def cleanup_count(self) -> int:
        return self._counter

    def removed_counts(self) -> Dict[str, int]:
        """Accounts removed so far, by path ("confirm" | "force")."""
        return dict(self._removed)

    def list_marked(self) -> List[CleanupMark]:
        with self._lock:
            return sorted(self._marks.values(), key=lambda m: (m.marked_height, m.account))

    # --- mutations (all locked) ---

    def write_account_data(self, caller: str, payload: bytes, *, now: int) -> AccountRecord:
        """Upsert the caller's own record; created_at is set on first insert only."""
        with self._lock:
            rec = self._accounts.get(caller)
            if rec is None:
                rec = AccountRecord(account=caller, payload=payload, created_at=now, last_modified=now)
                self._accounts[caller] = rec
            else:
                rec.payload = payload
                rec.last_modified = now
            return rec

    def mark(self, caller: str, account: str, confirmation_code: Code, *, now: int, height: int) -> CleanupMark:
        with self._lock:
            if account in self._marks:
                raise AlreadyMarked(account)
            if account not in self._accounts:
                raise AccountNotFound(account)
            self._guard.require_any_of(caller, (account, self._guard.owner))

            mark = CleanupMark(
                account=account,
                marked_by=caller,
                marked_at=now,
                marked_height=height,
                code_commitment=commit_code(confirmation_code),
            )
            self._marks[account] = mark
            self._counter += 1
            log.info("cleanup: marked account=%s by=%s height=%d", account, caller, height)
            return mark

    def cancel(self, caller: str, account: str) -> CleanupMark:
        with self._lock:
            mark = self._require_mark(account)
            self._guard.require_any_of(caller, (account, mark.marked_by, self._guard.owner))

            del self._marks[account]
            self._counter -= 1
            log.info("cleanup: cancelled account=%s by=%s", account, caller)
            return mark

    def confirm(self, caller: str, account: str, confirmation_code: Code) -> Tuple[AccountRecord, CleanupMark]:
        """Remove the record and the mark once the confirmation code matches."""
        with self._lock:
            mark = self._require_mark(account)
            self._guard.require_any_of(caller, (account, mark.marked_by, self._guard.owner))
            if not mark.matches(confirmation_code):
                log.warning("cleanup: confirmation mismatch account=%s caller=%s", account, caller)
                raise ConfirmationMismatch(account)

            rec = self._accounts.pop(account)
            del self._marks[account]
            self._counter -= 1
            self._removed["confirm"] += 1
            log.info("cleanup: confirmed account=%s by=%s", account, caller)
            return rec, mark

    def admin_force(self, caller: str, account: str) -> Tuple[AccountRecord, Optional[CleanupMark]]:
        """Owner-only removal that bypasses the confirmation code; a mark is optional."""
        with self._lock:
            self._guard.require_owner(caller)
            if account not in self._accounts:
                raise AccountNotFound(account)

            rec = self._accounts.pop(account)
            mark = self._marks.pop(account, None)
            if mark is not None:
                self._counter -= 1
            self._removed["force"] += 1
            log.info("cleanup: forced account=%s had_mark=%s", account, mark is not None)
            return rec, mark

    # --- utilities ---

    def _require_mark(self, account: str) -> CleanupMark:
        mark = self._marks.get(account)
        if mark is None:
            raise NotMarked(account)
        return mark

    def assert_consistent(self) -> None:
        """Verify counter and mark/record invariants."""
        with self._lock:
            if self._counter != len(self._marks):
                raise ReclaimError(
                    "cleanup counter invariant violated",
                    details={"counter": self._counter, "marks": len(self._marks)},
                )
            orphans = [a for a in self._marks if a not in self._accounts]
            if orphans:
                raise ReclaimError("marks without account records", details={"accounts": orphans})


__all__ = ["AccountRecord", "CleanupMark", "CleanupRegistry", "commit_code"]
