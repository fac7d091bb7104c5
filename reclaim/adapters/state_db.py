from __future__ import annotations

"""
Reclaim SQLite state adapter
============================

Purpose
-------
Durable snapshots of a `ReclaimService`: account records, cleanup marks,
cleanup sessions, per-identity stats and pending balances, the treasury
journal and the event log. Indexed columns back the inspection CLI's filters;
composite values (parameters, totals, event payloads) are stored as JSON.

Design notes
------------
- Single-writer, many-reader friendly via WAL.
- Schema versioned and created on open().
- `save_service` replaces the whole snapshot inside one transaction, so a
  reader never observes a half-written state.
- Domain invariants are re-checked on `load_service` (see
  `ReclaimService.assert_consistent`).

Example
-------
    db = ReclaimStateDB("reclaim.db")
    db.save_service(svc)
    svc2 = db.load_service(config)
    db.list_sessions(reporter="anim1alice", unsettled_only=True)
"""

import contextlib
import json
import logging
import os
import sqlite3
import threading
from typing import Any, Dict, Iterator, List, Optional

from reclaim.config import ReclaimConfig
from reclaim.service import ReclaimService
from reclaim.treasury.state import PayoutSink

log = logging.getLogger(__name__)

# ---- Errors -----------------------------------------------------------------


class ReclaimStateError(RuntimeError):
    """Base error for the reclaim state DB."""


class SchemaMismatch(ReclaimStateError):
    """Database was written with a different schema version."""


# ---- Utilities ---------------------------------------------------------------


def _to_json(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


def _from_json(text: Optional[str]) -> Any:
    if not text:
        return None
    return json.loads(text)


# ---- Main adapter ------------------------------------------------------------


class ReclaimStateDB:
    """
    Tiny SQLite adapter for reclaim state.

    Thread-safe for simple concurrent access via an internal RLock.
    """

    SCHEMA_VERSION = 1

    def __init__(self, path: str) -> None:
        """
        Open or create the SQLite database.

        `path` may be a filesystem path, ":memory:", or a URI
        (e.g. "file:reclaim.db?mode=rwc").
        """
        uri = path.startswith("file:")
        self._db = sqlite3.connect(
            path,
            uri=uri,
            check_same_thread=False,
            isolation_level=None,  # autocommit; we'll manage transactions
        )
        self._db.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._apply_pragmas()
        try:
            self._migrate()
        except (sqlite3.Error, SchemaMismatch):
            self._db.close()
            raise

    # -- lifecycle -------------------------------------------------------------

    def close(self) -> None:
        with self._lock:
            self._db.close()

    def __enter__(self) -> "ReclaimStateDB":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @contextlib.contextmanager
    def tx(self) -> Iterator[None]:
        """
        Transaction context manager.

        Usage:
            with db.tx():
                db.do_write(...)
        """
        with self._lock:
            self._db.execute("BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                self._db.execute("ROLLBACK")
                raise
            self._db.execute("COMMIT")

    def _apply_pragmas(self) -> None:
        cur = self._db.cursor()
        cur.execute("PRAGMA journal_mode=WAL")
        cur.execute("PRAGMA synchronous=NORMAL")
        cur.execute("PRAGMA foreign_keys=ON")
        cur.execute("PRAGMA temp_store=MEMORY")
        cur.close()

    # -- schema ----------------------------------------------------------------

    def _migrate(self) -> None:
        # executescript() commits on its own, so only the version stamp runs in tx().
        self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )
        with self.tx():
            row = self._db.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()
            if not row:
                self._db.execute(
                    "INSERT INTO meta(key, value) VALUES('schema_version', ?)",
                    (str(self.SCHEMA_VERSION),),
                )
            elif int(row["value"]) != self.SCHEMA_VERSION:
                raise SchemaMismatch(
                    f"schema version {row['value']} is not supported (expected {self.SCHEMA_VERSION})"
                )
        self._db.executescript(
            """
            CREATE TABLE IF NOT EXISTS accounts (
                account       TEXT PRIMARY KEY,
                payload       BLOB NOT NULL,
                created_at    INTEGER NOT NULL,
                last_modified INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS marks (
                account          TEXT PRIMARY KEY,
                marked_by        TEXT NOT NULL,
                marked_at        INTEGER NOT NULL,
                marked_height    INTEGER NOT NULL,
                code_commitment  TEXT NOT NULL,
                FOREIGN KEY(account) REFERENCES accounts(account) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS sessions (
                reporter          TEXT NOT NULL,
                session_id        INTEGER NOT NULL,
                accounts_cleaned  INTEGER NOT NULL,
                base              INTEGER NOT NULL,
                bonus             INTEGER NOT NULL,
                reward_amount     INTEGER NOT NULL,
                bonus_applied     INTEGER NOT NULL,
                timestamp         INTEGER NOT NULL,
                height            INTEGER NOT NULL,
                settled           INTEGER NOT NULL DEFAULT 0,
                settled_at        INTEGER,
                settled_via       TEXT,             -- 'session' | 'distribute' | 'aggregate'
                paid_to           TEXT,
                PRIMARY KEY(reporter, session_id)
            );
            CREATE INDEX IF NOT EXISTS idx_sessions_settled ON sessions(reporter, settled);

            CREATE TABLE IF NOT EXISTS user_stats (
                identity          TEXT PRIMARY KEY,
                accounts_cleaned  INTEGER NOT NULL,
                rewards_earned    INTEGER NOT NULL,
                rewards_claimed   INTEGER NOT NULL,
                session_count     INTEGER NOT NULL,
                last_activity     INTEGER
            );

            CREATE TABLE IF NOT EXISTS pending (
                identity TEXT PRIMARY KEY,
                amount   INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS next_session_ids (
                reporter TEXT PRIMARY KEY,
                next_id  INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS treasury_journal (
                seq            INTEGER PRIMARY KEY,
                op             TEXT NOT NULL,       -- 'fund' | 'payout' | 'emergency_withdraw'
                amount         INTEGER NOT NULL,
                counterparty   TEXT NOT NULL,
                height         INTEGER NOT NULL,
                reason         TEXT NOT NULL,
                balance_after  INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS events (
                seq        INTEGER PRIMARY KEY,
                kind       TEXT NOT NULL,
                height     INTEGER NOT NULL,
                ts         INTEGER NOT NULL,
                data_json  TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_events_kind ON events(kind);

            CREATE TABLE IF NOT EXISTS scalars (
                key        TEXT PRIMARY KEY,
                value_json TEXT NOT NULL
            );
            """
        )

    # ---- snapshot write ------------------------------------------------------

    def save_service(self, svc: ReclaimService) -> None:
        """Replace the stored snapshot with the current state of `svc`."""
        snap = svc.dump()
        reg, led, tre = snap["registry"], snap["ledger"], snap["treasury"]
        with self.tx():
            for table in (
                "marks", "accounts", "sessions", "user_stats", "pending",
                "next_session_ids", "treasury_journal", "events", "scalars",
            ):
                self._db.execute(f"DELETE FROM {table}")

            self._db.executemany(
                "INSERT INTO accounts(account,payload,created_at,last_modified) VALUES(?,?,?,?)",
                [
                    (a["account"], bytes.fromhex(a["payload"]), a["created_at"], a["last_modified"])
                    for a in reg["accounts"].values()
                ],
            )
            self._db.executemany(
                "INSERT INTO marks(account,marked_by,marked_at,marked_height,code_commitment) VALUES(?,?,?,?,?)",
                [
                    (m["account"], m["marked_by"], m["marked_at"], m["marked_height"], m["code_commitment"])
                    for m in reg["marks"].values()
                ],
            )
            self._db.executemany(
                """
                INSERT INTO sessions(reporter,session_id,accounts_cleaned,base,bonus,reward_amount,
                                     bonus_applied,timestamp,height,settled,settled_at,settled_via,paid_to)
                VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?)
                """,
                [
                    (
                        s["reporter"], s["session_id"], s["accounts_cleaned"], s["base"], s["bonus"],
                        s["reward_amount"], 1 if s["bonus_applied"] else 0, s["timestamp"], s["height"],
                        1 if s["settled"] else 0, s["settled_at"], s["settled_via"], s["paid_to"],
                    )
                    for s in led["sessions"]
                ],
            )
            self._db.executemany(
                """
                INSERT INTO user_stats(identity,accounts_cleaned,rewards_earned,rewards_claimed,session_count,last_activity)
                VALUES(?,?,?,?,?,?)
                """,
                [
                    (
                        u["identity"], u["accounts_cleaned"], u["rewards_earned"],
                        u["rewards_claimed"], u["session_count"], u["last_activity"],
                    )
                    for u in led["stats"].values()
                ],
            )
            self._db.executemany(
                "INSERT INTO pending(identity,amount) VALUES(?,?)", list(led["pending"].items())
            )
            self._db.executemany(
                "INSERT INTO next_session_ids(reporter,next_id) VALUES(?,?)",
                list(led["next_session_id"].items()),
            )
            self._db.executemany(
                """
                INSERT INTO treasury_journal(seq,op,amount,counterparty,height,reason,balance_after)
                VALUES(?,?,?,?,?,?,?)
                """,
                [
                    (e["seq"], e["op"], e["amount"], e["counterparty"], e["height"], e["reason"], e["balance_after"])
                    for e in tre["journal"]
                ],
            )
            self._db.executemany(
                "INSERT INTO events(seq,kind,height,ts,data_json) VALUES(?,?,?,?,?)",
                [(e["seq"], e["kind"], e["height"], e["ts"], _to_json(e["data"])) for e in snap["events"]],
            )
            scalars = {
                "height": snap["height"],
                "params": snap["params"],
                "cleanup_counter": reg["counter"],
                "removed": reg["removed"],
                "ledger_totals": led["totals"],
                "treasury": {k: tre[k] for k in ("balance", "total_funded", "total_paid")},
            }
            self._db.executemany(
                "INSERT INTO scalars(key,value_json) VALUES(?,?)",
                [(k, _to_json(v)) for k, v in scalars.items()],
            )
        log.info(
            "state_db: saved snapshot height=%d accounts=%d sessions=%d",
            snap["height"], len(reg["accounts"]), len(led["sessions"]),
        )

    # ---- snapshot read -------------------------------------------------------

    def is_empty(self) -> bool:
        return self.get_scalar("height") is None

    def get_scalar(self, key: str) -> Any:
        row = self._db.execute("SELECT value_json FROM scalars WHERE key=?", (key,)).fetchone()
        return _from_json(row["value_json"]) if row else None

    def load_snapshot(self) -> Dict[str, Any]:
        """Rebuild the `ReclaimService.dump()` dict from the tables."""
        with self._lock:
            accounts = {
                r["account"]: {
                    "account": r["account"],
                    "payload": bytes(r["payload"]).hex(),
                    "created_at": int(r["created_at"]),
                    "last_modified": int(r["last_modified"]),
                }
                for r in self._db.execute("SELECT * FROM accounts ORDER BY account")
            }
            marks = {
                r["account"]: {
                    "account": r["account"],
                    "marked_by": r["marked_by"],
                    "marked_at": int(r["marked_at"]),
                    "marked_height": int(r["marked_height"]),
                    "code_commitment": r["code_commitment"],
                }
                for r in self._db.execute("SELECT * FROM marks ORDER BY account")
            }
            sessions = [
                self._row_session(r)
                for r in self._db.execute("SELECT * FROM sessions ORDER BY reporter, session_id")
            ]
            stats = {
                r["identity"]: self._row_stats(r)
                for r in self._db.execute("SELECT * FROM user_stats ORDER BY identity")
            }
            pending = {
                r["identity"]: int(r["amount"])
                for r in self._db.execute("SELECT * FROM pending ORDER BY identity")
            }
            next_ids = {
                r["reporter"]: int(r["next_id"])
                for r in self._db.execute("SELECT * FROM next_session_ids ORDER BY reporter")
            }
            journal = [
                {
                    "seq": int(r["seq"]),
                    "op": r["op"],
                    "amount": int(r["amount"]),
                    "counterparty": r["counterparty"],
                    "height": int(r["height"]),
                    "reason": r["reason"],
                    "balance_after": int(r["balance_after"]),
                }
                for r in self._db.execute("SELECT * FROM treasury_journal ORDER BY seq")
            ]
            events = [
                {
                    "seq": int(r["seq"]),
                    "kind": r["kind"],
                    "height": int(r["height"]),
                    "ts": int(r["ts"]),
                    "data": _from_json(r["data_json"]) or {},
                }
                for r in self._db.execute("SELECT * FROM events ORDER BY seq")
            ]
            treasury = self.get_scalar("treasury") or {}
            return {
                "height": int(self.get_scalar("height") or 0),
                "params": self.get_scalar("params") or {},
                "registry": {
                    "accounts": accounts,
                    "marks": marks,
                    "counter": int(self.get_scalar("cleanup_counter") or len(marks)),
                    "removed": self.get_scalar("removed") or {},
                },
                "ledger": {
                    "sessions": sessions,
                    "stats": stats,
                    "pending": pending,
                    "next_session_id": next_ids,
                    "totals": self.get_scalar("ledger_totals") or {},
                },
                "treasury": {**treasury, "journal": journal},
                "events": events,
            }

    def load_service(
        self,
        config: ReclaimConfig,
        *,
        sink: Optional[PayoutSink] = None,
    ) -> ReclaimService:
        """Construct a service from the stored snapshot (empty service if none)."""
        if self.is_empty():
            return ReclaimService(config, sink=sink)
        return ReclaimService.load(config, self.load_snapshot(), sink=sink)

    # ---- inspection queries --------------------------------------------------

    def get_user_stats(self, identity: str) -> Optional[Dict[str, Any]]:
        row = self._db.execute("SELECT * FROM user_stats WHERE identity=?", (identity,)).fetchone()
        return self._row_stats(row) if row else None

    def get_pending(self, identity: str) -> int:
        row = self._db.execute("SELECT amount FROM pending WHERE identity=?", (identity,)).fetchone()
        return int(row["amount"]) if row else 0

    def pool_summary(self) -> Dict[str, Any]:
        """Treasury totals plus outstanding liabilities, as stored."""
        treasury = self.get_scalar("treasury") or {}
        pending = self._db.execute("SELECT COALESCE(SUM(amount), 0) AS s FROM pending").fetchone()
        marks = self._db.execute("SELECT COUNT(*) AS n FROM marks").fetchone()
        return {
            "balance": int(treasury.get("balance", 0)),
            "total_funded": int(treasury.get("total_funded", 0)),
            "total_paid": int(treasury.get("total_paid", 0)),
            "total_pending": int(pending["s"]),
            "active_marks": int(marks["n"]),
            "height": int(self.get_scalar("height") or 0),
        }

    def list_sessions(
        self,
        *,
        reporter: Optional[str] = None,
        unsettled_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM sessions WHERE 1=1"
        args: List[Any] = []
        if reporter:
            sql += " AND reporter=?"
            args.append(reporter)
        if unsettled_only:
            sql += " AND settled=0"
        sql += " ORDER BY reporter, session_id LIMIT ? OFFSET ?"
        args.extend([int(limit), int(offset)])
        return [self._row_session(r) for r in self._db.execute(sql, args).fetchall()]

    def list_journal(self, *, op: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM treasury_journal"
        args: List[Any] = []
        if op:
            sql += " WHERE op=?"
            args.append(op)
        sql += " ORDER BY seq DESC LIMIT ?"
        args.append(int(limit))
        return [dict(r) for r in self._db.execute(sql, args).fetchall()]

    # ---- rows → dicts --------------------------------------------------------

    def _row_session(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "reporter": row["reporter"],
            "session_id": int(row["session_id"]),
            "accounts_cleaned": int(row["accounts_cleaned"]),
            "base": int(row["base"]),
            "bonus": int(row["bonus"]),
            "reward_amount": int(row["reward_amount"]),
            "bonus_applied": bool(row["bonus_applied"]),
            "timestamp": int(row["timestamp"]),
            "height": int(row["height"]),
            "settled": bool(row["settled"]),
            "settled_at": int(row["settled_at"]) if row["settled_at"] is not None else None,
            "settled_via": row["settled_via"],
            "paid_to": row["paid_to"],
        }

    def _row_stats(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "identity": row["identity"],
            "accounts_cleaned": int(row["accounts_cleaned"]),
            "rewards_earned": int(row["rewards_earned"]),
            "rewards_claimed": int(row["rewards_claimed"]),
            "session_count": int(row["session_count"]),
            "last_activity": int(row["last_activity"]) if row["last_activity"] is not None else None,
        }


# Convenience: open via env var if present (useful for quick REPLs)
def open_default() -> ReclaimStateDB:
    """
    Open ReclaimStateDB at the path from RECLAIM_DB (default: ./reclaim.db).
    """
    path = os.environ.get("RECLAIM_DB", "reclaim.db")
    return ReclaimStateDB(path)


__all__ = [
    "ReclaimStateDB",
    "ReclaimStateError",
    "SchemaMismatch",
    "open_default",
]
