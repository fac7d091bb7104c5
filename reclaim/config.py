"""
reclaim.config — configuration for account cleanup and the reward treasury

Covers:
- Owner identity (fixed at construction; the only privileged caller)
- Reward rate and bonus tier (multiplier percentage, threshold, eligibility mode)
- Treasury funding policy (anyone, or owner only)
- Boundary limits for identities, payloads and confirmation codes
- Optional allow-list of identities permitted to report cleanups

Environment overrides (all optional except the owner):

  RECLAIM_OWNER=anim1owner...

  # Rewards (base units per account cleaned; multiplier is a percentage)
  RECLAIM_REWARD_RATE=100
  RECLAIM_BONUS_MULTIPLIER=150
  RECLAIM_BONUS_THRESHOLD=10
  RECLAIM_BONUS_MODE=cumulative        # or per_event

  # Treasury
  RECLAIM_FUND_OWNER_ONLY=false

  # Limits
  RECLAIM_MAX_IDENTITY_LENGTH=128
  RECLAIM_MAX_PAYLOAD_BYTES=4096
  RECLAIM_MAX_CODE_LENGTH=64

  # Reporting (comma separated; empty means any identity may report)
  RECLAIM_REPORTERS=

You can also load from a JSON or YAML file via `RECLAIM_CONFIG_FILE=/path/to/config.(json|yaml|yml)`.
File values override defaults; environment overrides the file.
"""
from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from reclaim.economics.calculator import BonusMode


# -------------------------- Data classes --------------------------


@dataclass
class RewardSettings:
    """Reward rate (base units per account) and bonus tier."""
    rate: int = 100
    bonus_multiplier: int = 150     # percent; 150 == 1.5x
    bonus_threshold: int = 10
    bonus_mode: BonusMode = BonusMode.CUMULATIVE

    def validate(self) -> None:
        if self.rate <= 0:
            raise ValueError(f"rate must be positive (got {self.rate}).")
        if self.bonus_multiplier < 100:
            raise ValueError(f"bonus_multiplier must be >= 100 percent (got {self.bonus_multiplier}).")
        if self.bonus_threshold <= 0:
            raise ValueError(f"bonus_threshold must be positive (got {self.bonus_threshold}).")
        self.bonus_mode = BonusMode.parse(self.bonus_mode)


@dataclass
class TreasuryPolicy:
    """Who may add value to the reward pool."""
    fund_owner_only: bool = False

    def validate(self) -> None:
        if not isinstance(self.fund_owner_only, bool):
            raise ValueError("fund_owner_only must be a boolean.")


@dataclass
class Limits:
    """Structural limits enforced before any operation runs."""
    max_identity_length: int = 128
    max_payload_bytes: int = 4096
    max_code_length: int = 64

    def validate(self) -> None:
        for name, v in (("max_identity_length", self.max_identity_length),
                        ("max_payload_bytes", self.max_payload_bytes),
                        ("max_code_length", self.max_code_length)):
            if v <= 0:
                raise ValueError(f"{name} must be positive (got {v}).")


@dataclass
class ReclaimConfig:
    """Top-level configuration container."""
    owner: str = ""
    rewards: RewardSettings = field(default_factory=RewardSettings)
    treasury: TreasuryPolicy = field(default_factory=TreasuryPolicy)
    limits: Limits = field(default_factory=Limits)
    reporters: Tuple[str, ...] = ()

    def validate(self) -> None:
        if not self.owner:
            raise ValueError("owner must be a non-empty identity.")
        if len(self.owner) > self.limits.max_identity_length:
            raise ValueError("owner exceeds max_identity_length.")
        self.rewards.validate()
        self.treasury.validate()
        self.limits.validate()
        self.reporters = tuple(str(r) for r in self.reporters if str(r))

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["rewards"]["bonus_mode"] = BonusMode.parse(self.rewards.bonus_mode).value
        d["reporters"] = list(self.reporters)
        return d


# -------------------------- Loaders --------------------------


def _getenv_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(str(v).replace("_", ""))
    except Exception as e:
        raise ValueError(f"Invalid int for {name}: {v!r}") from e


def _getenv_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    s = v.strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid bool for {name}: {v!r}")


def _getenv_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    v = os.getenv(name)
    if v is None:
        return default
    return tuple(p.strip() for p in v.split(",") if p.strip())


def from_env(
    base: Optional[ReclaimConfig] = None,
    prefix: str = "RECLAIM_",
    *,
    validate: bool = True,
) -> ReclaimConfig:
    """
    Build a ReclaimConfig from environment variables, optionally layering on top of `base`.
    """
    cfg = base or ReclaimConfig()

    new_cfg = ReclaimConfig(
        owner=os.getenv(f"{prefix}OWNER") or cfg.owner,
        rewards=RewardSettings(
            rate=_getenv_int(f"{prefix}REWARD_RATE", cfg.rewards.rate),
            bonus_multiplier=_getenv_int(f"{prefix}BONUS_MULTIPLIER", cfg.rewards.bonus_multiplier),
            bonus_threshold=_getenv_int(f"{prefix}BONUS_THRESHOLD", cfg.rewards.bonus_threshold),
            bonus_mode=BonusMode.parse(os.getenv(f"{prefix}BONUS_MODE") or cfg.rewards.bonus_mode),
        ),
        treasury=TreasuryPolicy(
            fund_owner_only=_getenv_bool(f"{prefix}FUND_OWNER_ONLY", cfg.treasury.fund_owner_only),
        ),
        limits=Limits(
            max_identity_length=_getenv_int(f"{prefix}MAX_IDENTITY_LENGTH", cfg.limits.max_identity_length),
            max_payload_bytes=_getenv_int(f"{prefix}MAX_PAYLOAD_BYTES", cfg.limits.max_payload_bytes),
            max_code_length=_getenv_int(f"{prefix}MAX_CODE_LENGTH", cfg.limits.max_code_length),
        ),
        reporters=_getenv_list(f"{prefix}REPORTERS", cfg.reporters),
    )
    if validate:
        new_cfg.validate()
    return new_cfg


def from_dict(data: Dict[str, Any], *, validate: bool = True) -> ReclaimConfig:
    """Build a config from a plain mapping (the shape produced by `to_dict`)."""
    rewards = data.get("rewards", {}) or {}
    treasury = data.get("treasury", {}) or {}
    limits = data.get("limits", {}) or {}

    defaults_r = RewardSettings()
    defaults_l = Limits()
    cfg = ReclaimConfig(
        owner=str(data.get("owner", "")),
        rewards=RewardSettings(
            rate=int(rewards.get("rate", defaults_r.rate)),
            bonus_multiplier=int(rewards.get("bonus_multiplier", defaults_r.bonus_multiplier)),
            bonus_threshold=int(rewards.get("bonus_threshold", defaults_r.bonus_threshold)),
            bonus_mode=BonusMode.parse(rewards.get("bonus_mode", defaults_r.bonus_mode)),
        ),
        treasury=TreasuryPolicy(
            fund_owner_only=bool(treasury.get("fund_owner_only", TreasuryPolicy().fund_owner_only)),
        ),
        limits=Limits(
            max_identity_length=int(limits.get("max_identity_length", defaults_l.max_identity_length)),
            max_payload_bytes=int(limits.get("max_payload_bytes", defaults_l.max_payload_bytes)),
            max_code_length=int(limits.get("max_code_length", defaults_l.max_code_length)),
        ),
        reporters=tuple(data.get("reporters", ()) or ()),
    )
    if validate:
        cfg.validate()
    return cfg


def from_file(path: str | os.PathLike[str], *, validate: bool = True) -> ReclaimConfig:
    """
    Load configuration from a JSON or YAML file.

    Pass validate=False when the owner is expected to come from the environment.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(p)

    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text or "{}")
    return from_dict(data, validate=validate)


def load(*, validate: bool = True) -> ReclaimConfig:
    """
    Load configuration using the following precedence:
      1) File at $RECLAIM_CONFIG_FILE (JSON/YAML)
      2) Environment variables (RECLAIM_*), applied on top of defaults or file values
    """
    file_path = os.getenv("RECLAIM_CONFIG_FILE")
    base = from_file(file_path, validate=False) if file_path else ReclaimConfig()
    return from_env(base=base, validate=validate)


# -------------------------- Utilities --------------------------


def pretty(cfg: Optional[ReclaimConfig] = None) -> str:
    """Return a human-readable JSON string of the current config."""
    obj = (cfg or load()).to_dict()
    return json.dumps(obj, indent=2, sort_keys=True)


__all__ = [
    "RewardSettings",
    "TreasuryPolicy",
    "Limits",
    "ReclaimConfig",
    "from_env",
    "from_dict",
    "from_file",
    "load",
    "pretty",
]
