from __future__ import annotations

"""
reclaim.cli.inspect
-------------------

Inspect reclaim configuration and stored state:
- effective configuration (file + environment)
- reward previews for a cleanup report
- reward pool totals, per-identity stats and cleanup sessions from a SQLite
  snapshot written by `ReclaimStateDB.save_service`

Examples
--------
# Effective config as JSON
python -m reclaim.cli.inspect config

# What would 4 more accounts pay someone who already cleaned 8?
python -m reclaim.cli.inspect preview 4 --prior 8

# Pool totals from a snapshot
python -m reclaim.cli.inspect pool --db reclaim.db

# Unsettled sessions of one reporter, JSON
python -m reclaim.cli.inspect sessions anim1alice --unsettled --json
"""

import json
import os
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from reclaim import config as reclaim_config
from reclaim.adapters.state_db import ReclaimStateDB, ReclaimStateError
from reclaim.economics.calculator import BonusMode, RewardParams, compute_with
from reclaim.errors import ReclaimError

app = typer.Typer(
    name="reclaim-inspect",
    add_completion=False,
    no_args_is_help=True,
    help="Inspect reclaim configuration, reward previews and stored cleanup/reward state.",
)

DB_HELP = "SQLite snapshot path (default: $RECLAIM_DB or ./reclaim.db)."

# -------------------- utils --------------------


def _width(default: int = 100) -> int:
    return shutil.get_terminal_size((default, 20)).columns


def _pad(s: str, n: int) -> str:
    if len(s) <= n:
        return s + " " * (n - len(s))
    if n <= 4:
        return s[:n]
    return s[: n - 1] + "…"


def _echo_json(obj: Any) -> None:
    typer.echo(json.dumps(obj, indent=2, sort_keys=True))


def _echo_kv(title: str, d: Dict[str, Any]) -> None:
    typer.secho(title, bold=True)
    key_w = max(len(k) for k in d) if d else 0
    for k, v in d.items():
        typer.echo(f"  {_pad(k, key_w)}  {'-' if v is None else v}")


def _open_db_or_exit(db: Optional[str]) -> ReclaimStateDB:
    path = db or os.environ.get("RECLAIM_DB", "reclaim.db")
    if not path.startswith("file:") and path != ":memory:" and not Path(path).exists():
        typer.secho(f"State DB not found: {path}", fg=typer.colors.RED)
        raise typer.Exit(2)
    try:
        return ReclaimStateDB(path)
    except ReclaimStateError as e:
        typer.secho(f"Cannot open state DB {path}: {e}", fg=typer.colors.RED)
        raise typer.Exit(2)


def _load_config_or_exit() -> reclaim_config.ReclaimConfig:
    try:
        return reclaim_config.load(validate=False)
    except (ValueError, FileNotFoundError) as e:
        typer.secho(f"Invalid configuration: {e}", fg=typer.colors.RED)
        raise typer.Exit(2)


# -------------------- commands --------------------


@app.command("config")
def cmd_config(
    check: bool = typer.Option(False, "--check", help="Also validate (requires RECLAIM_OWNER)."),
) -> None:
    """Print the effective configuration as JSON."""
    cfg = _load_config_or_exit()
    if check:
        try:
            cfg.validate()
        except ValueError as e:
            typer.secho(f"Invalid configuration: {e}", fg=typer.colors.RED)
            raise typer.Exit(1)
    typer.echo(reclaim_config.pretty(cfg))


@app.command("preview")
def cmd_preview(
    accounts_cleaned: int = typer.Argument(..., help="Accounts cleaned in the report."),
    prior: int = typer.Option(0, "--prior", min=0, help="Reporter's cumulative count before this report."),
    rate: Optional[int] = typer.Option(None, "--rate", help="Override reward rate (base units per account)."),
    multiplier: Optional[int] = typer.Option(None, "--multiplier", help="Override bonus multiplier (percent)."),
    threshold: Optional[int] = typer.Option(None, "--threshold", help="Override bonus threshold."),
    mode: Optional[str] = typer.Option(None, "--mode", help="Override bonus mode (cumulative|per_event)."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Compute the reward a report would earn, without touching any state."""
    settings = _load_config_or_exit().rewards
    try:
        params = RewardParams(
            rate=settings.rate if rate is None else rate,
            bonus_multiplier=settings.bonus_multiplier if multiplier is None else multiplier,
            bonus_threshold=settings.bonus_threshold if threshold is None else threshold,
            mode=BonusMode.parse(settings.bonus_mode if mode is None else mode),
        )
        out = compute_with(params, accounts_cleaned, prior)
    except (ReclaimError, ValueError) as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(1)
    result = {**out.to_dict(), "accounts_cleaned": accounts_cleaned, "prior": prior, "params": params.to_dict()}
    if json_out:
        _echo_json(result)
        return
    _echo_kv(
        "Reward preview:",
        {
            "accounts_cleaned": accounts_cleaned,
            "prior": prior,
            "base": out.base,
            "bonus": out.bonus,
            "total": out.total,
            "bonus_applied": out.bonus_applied,
        },
    )


@app.command("pool")
def cmd_pool(
    db: Optional[str] = typer.Option(None, "--db", help=DB_HELP),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Reward pool balance, totals and outstanding pending rewards."""
    with _open_db_or_exit(db) as sdb:
        summary = sdb.pool_summary()
    if json_out:
        _echo_json(summary)
        return
    _echo_kv("Reward pool:", summary)
    if summary["total_pending"] > summary["balance"]:
        typer.secho("  warning: pending rewards exceed the pool balance", fg=typer.colors.YELLOW)


@app.command("user")
def cmd_user(
    identity: str = typer.Argument(..., help="Reporter/claimant identity."),
    db: Optional[str] = typer.Option(None, "--db", help=DB_HELP),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Cleanup stats and pending reward of one identity."""
    with _open_db_or_exit(db) as sdb:
        stats = sdb.get_user_stats(identity)
        pending = sdb.get_pending(identity)
    if stats is None:
        stats = {"identity": identity, "accounts_cleaned": 0, "rewards_earned": 0,
                 "rewards_claimed": 0, "session_count": 0, "last_activity": None}
    stats["pending"] = pending
    if json_out:
        _echo_json(stats)
        return
    _echo_kv(f"Identity {identity}:", stats)


@app.command("sessions")
def cmd_sessions(
    identity: str = typer.Argument(..., help="Reporter identity."),
    db: Optional[str] = typer.Option(None, "--db", help=DB_HELP),
    unsettled: bool = typer.Option(False, "--unsettled", help="Only sessions not yet paid."),
    limit: int = typer.Option(100, min=1, max=10000, help="Max number of sessions to show."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List the cleanup sessions reported by one identity."""
    with _open_db_or_exit(db) as sdb:
        rows = sdb.list_sessions(reporter=identity, unsettled_only=unsettled, limit=limit)
    if json_out:
        _echo_json(rows)
        return
    _print_sessions_table(rows)


def _print_sessions_table(rows: List[Dict[str, Any]]) -> None:
    if not rows:
        typer.echo("No sessions.")
        return
    cols = [
        ("ID", 6, lambda r: str(r["session_id"])),
        ("CLEANED", 8, lambda r: str(r["accounts_cleaned"])),
        ("BASE", 10, lambda r: str(r["base"])),
        ("BONUS", 10, lambda r: str(r["bonus"])),
        ("REWARD", 10, lambda r: str(r["reward_amount"])),
        ("HEIGHT", 8, lambda r: str(r["height"])),
        ("STATUS", 10, lambda r: (r["settled_via"] or "settled") if r["settled"] else "unsettled"),
        ("PAID TO", 14, lambda r: r["paid_to"] or "-"),
    ]
    used = sum(w for _, w, _ in cols) + len(cols)
    width = _width()
    if used < width:
        cols[-1] = ("PAID TO", cols[-1][1] + width - used, cols[-1][2])
    typer.secho(" ".join(_pad(n, w) for n, w, _ in cols), bold=True)
    for r in rows:
        typer.echo(" ".join(_pad(fn(r), w) for _, w, fn in cols))
    total = sum(r["reward_amount"] for r in rows if not r["settled"])
    typer.secho(f"Unsettled total: {total}", bold=True)


def get_app() -> typer.Typer:
    return app


if __name__ == "__main__":
    app()
