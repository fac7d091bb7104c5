"""
reclaim.economics.calculator
----------------------------

Pure reward computation for cleanup reports.

    base  = accounts_cleaned * rate
    bonus = base * (bonus_multiplier - 100) // 100      (when eligible, else 0)
    total = base + bonus

`bonus_multiplier` is a percentage in two-decimal fixed point (150 == 1.50x).
Division truncates toward zero; amounts are integer base units throughout.

Eligibility depends on the configured `BonusMode`:

  • CUMULATIVE — the reporter's lifetime count *including* this report reaches
    `bonus_threshold` (prior_cumulative + accounts_cleaned >= threshold).
  • PER_EVENT  — this single report alone reaches the threshold
    (accounts_cleaned >= threshold).

Nothing here touches state; the ledger calls `compute_reward` when recording a
session and the service exposes the same function for read-only previews.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Union

from reclaim.errors import InvalidAmount, InvalidMetric

PERCENT_DENOM = 100


class BonusMode(str, Enum):
    CUMULATIVE = "cumulative"
    PER_EVENT = "per_event"

    @classmethod
    def parse(cls, value: Union[str, "BonusMode"]) -> "BonusMode":
        if isinstance(value, BonusMode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            allowed = ", ".join(m.value for m in cls)
            raise ValueError(f"invalid bonus mode {value!r}, allowed: {allowed}") from e


@dataclass(frozen=True)
class RewardParams:
    """Reward parameters in effect for a computation."""

    rate: int
    bonus_multiplier: int
    bonus_threshold: int
    mode: BonusMode = BonusMode.CUMULATIVE

    def validate(self) -> None:
        if not isinstance(self.rate, int) or self.rate <= 0:
            raise InvalidAmount("rate must be a positive integer", details={"rate": self.rate})
        if not isinstance(self.bonus_multiplier, int) or self.bonus_multiplier < PERCENT_DENOM:
            raise InvalidAmount(
                "bonus_multiplier must be an integer percentage >= 100",
                details={"bonus_multiplier": self.bonus_multiplier},
            )
        if not isinstance(self.bonus_threshold, int) or self.bonus_threshold <= 0:
            raise InvalidAmount(
                "bonus_threshold must be a positive integer",
                details={"bonus_threshold": self.bonus_threshold},
            )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["mode"] = self.mode.value
        return d


@dataclass(frozen=True)
class RewardBreakdown:
    base: int
    bonus: int
    total: int
    bonus_applied: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def bonus_eligible(
    accounts_cleaned: int,
    prior_cumulative_count: int,
    bonus_threshold: int,
    mode: BonusMode,
) -> bool:
    if mode is BonusMode.PER_EVENT:
        return accounts_cleaned >= bonus_threshold
    return prior_cumulative_count + accounts_cleaned >= bonus_threshold


def compute_reward(
    accounts_cleaned: int,
    prior_cumulative_count: int,
    rate: int,
    bonus_multiplier: int,
    bonus_threshold: int,
    mode: BonusMode = BonusMode.CUMULATIVE,
) -> RewardBreakdown:
    """
    Compute (base, bonus, total, bonus_applied) for one cleanup report.

    Raises:
        InvalidMetric: accounts_cleaned is not a positive integer, or the prior
            cumulative count is negative.
        InvalidAmount: reward parameters are out of range.
    """
    if isinstance(accounts_cleaned, bool) or not isinstance(accounts_cleaned, int) or accounts_cleaned <= 0:
        raise InvalidMetric(
            "accounts_cleaned must be a positive integer",
            details={"accounts_cleaned": accounts_cleaned},
        )
    if not isinstance(prior_cumulative_count, int) or prior_cumulative_count < 0:
        raise InvalidMetric(
            "prior cumulative count must be a non-negative integer",
            details={"prior_cumulative_count": prior_cumulative_count},
        )
    RewardParams(rate, bonus_multiplier, bonus_threshold, mode).validate()

    base = accounts_cleaned * rate
    applied = bonus_eligible(accounts_cleaned, prior_cumulative_count, bonus_threshold, mode)
    bonus = (base * (bonus_multiplier - PERCENT_DENOM)) // PERCENT_DENOM if applied else 0
    return RewardBreakdown(base=base, bonus=bonus, total=base + bonus, bonus_applied=applied)


def compute_with(params: RewardParams, accounts_cleaned: int, prior_cumulative_count: int) -> RewardBreakdown:
    return compute_reward(
        accounts_cleaned,
        prior_cumulative_count,
        params.rate,
        params.bonus_multiplier,
        params.bonus_threshold,
        params.mode,
    )


__all__ = [
    "BonusMode",
    "RewardParams",
    "RewardBreakdown",
    "bonus_eligible",
    "compute_reward",
    "compute_with",
]
