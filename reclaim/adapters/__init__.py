from __future__ import annotations

"""
reclaim.adapters
================

Bridges from reclaim state to storage and other subsystems (SQLite snapshots
in `state_db`; payout sinks implement `reclaim.treasury.state.PayoutSink`).
"""

from typing import Tuple

from ..version import __version__

__all__: Tuple[str, ...] = ("__version__",)
