from __future__ import annotations
"""
Reclaim - account cleanup registry with a funded reward pool.

Account owners (or the deployment owner) mark stored account records for
cleanup and confirm removal with a code; reporters are credited integer
rewards for cleanup work and claim them from a shared treasury.

Public surface (lazily loaded):
- config, errors, metrics, events, access
- cleanup, economics, treasury
- service, adapters, rpc, cli
"""


import importlib
from typing import List

from .version import __version__

__all__: List[str] = [
    "__version__",
    "config",
    "errors",
    "metrics",
    "events",
    "access",
    "cleanup",
    "economics",
    "treasury",
    "service",
    "adapters",
    "rpc",
    "cli",
]

# --- Lazy module loader (PEP 562) -------------------------------------------------

_lazy_modules = set(__all__) - {"__version__"}


def __getattr__(name: str):
    if name in _lazy_modules:
        return importlib.import_module(f".{name}", __name__)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
    return sorted(set(globals().keys()) | _lazy_modules)


def get_version() -> str:
    """Return the reclaim package version string."""
    return __version__
