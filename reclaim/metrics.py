"""
Prometheus metrics for account cleanup and the reward treasury.

We expose counters, gauges and a histogram covering:
- cleanup: state transitions by action (mark / cancel / confirm / force / write)
- rejections: failed operations by error code
- reports: reward reports and accrued reward amount
- payouts: paid amounts by path (aggregate / session / distribute / emergency)
- treasury: current pool balance and funded total
- marks: currently active cleanup marks

This module can be mounted into any ASGI app via `metrics_app()`.
"""
from __future__ import annotations

from prometheus_client import (CollectorRegistry, Counter, Gauge, Histogram,
                               generate_latest, make_asgi_app)

# Use a dedicated registry so embedding apps can choose to merge or expose it directly.
REGISTRY = CollectorRegistry()

CLEANUP_TRANSITIONS = Counter(
    "reclaim_cleanup_transitions_total",
    "Committed cleanup registry transitions by action.",
    labelnames=("action",),
    registry=REGISTRY,
)

OPERATIONS_REJECTED = Counter(
    "reclaim_operations_rejected_total",
    "Operations that failed validation, by operation and error code.",
    labelnames=("operation", "code"),
    registry=REGISTRY,
)

CLEANUP_REPORTS = Counter(
    "reclaim_cleanup_reports_total",
    "Reward reports recorded, by whether the bonus tier applied.",
    labelnames=("bonus",),
    registry=REGISTRY,
)

REWARDS_ACCRUED = Counter(
    "reclaim_rewards_accrued_units_total",
    "Reward base units accrued to pending balances.",
    registry=REGISTRY,
)

PAYOUTS = Counter(
    "reclaim_payouts_units_total",
    "Base units paid out of the pool, by path.",
    labelnames=("path",),
    registry=REGISTRY,
)

PAYOUT_AMOUNT = Histogram(
    "reclaim_payout_amount_units",
    "Distribution of single payout amounts (base units).",
    buckets=(10, 100, 500, 1_000, 5_000, 10_000, 50_000, 100_000, 1_000_000),
    registry=REGISTRY,
)

TREASURY_BALANCE = Gauge(
    "reclaim_treasury_balance_units",
    "Current spendable pool balance (base units).",
    registry=REGISTRY,
)

TREASURY_FUNDED = Counter(
    "reclaim_treasury_funded_units_total",
    "Base units added to the pool.",
    registry=REGISTRY,
)

ACTIVE_MARKS = Gauge(
    "reclaim_active_cleanup_marks",
    "Accounts currently marked for cleanup.",
    registry=REGISTRY,
)


def observe_payout(path: str, amount: int, balance: int) -> None:
    PAYOUTS.labels(path=path).inc(amount)
    PAYOUT_AMOUNT.observe(amount)
    TREASURY_BALANCE.set(balance)


def render_latest() -> bytes:
    """Return the text exposition of all reclaim metrics."""
    return generate_latest(REGISTRY)


def metrics_app():
    """ASGI app serving this registry (mount at e.g. "/metrics")."""
    return make_asgi_app(registry=REGISTRY)


__all__ = [
    "REGISTRY",
    "CLEANUP_TRANSITIONS",
    "OPERATIONS_REJECTED",
    "CLEANUP_REPORTS",
    "REWARDS_ACCRUED",
    "PAYOUTS",
    "PAYOUT_AMOUNT",
    "TREASURY_BALANCE",
    "TREASURY_FUNDED",
    "ACTIVE_MARKS",
    "observe_payout",
    "render_latest",
    "metrics_app",
]
