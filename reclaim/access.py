"""
reclaim.access
==============

Owner and allow-list checks for privileged or owner-scoped operations.

The owner identity is fixed when the guard is constructed (it comes from
`ReclaimConfig.owner`); there is no transfer or renounce path. Checks are pure
predicates that raise `Unauthorized` on failure and never mutate state.

Typical usage
-------------
    guard = AccessGuard(owner="anim1owner")

    def admin_only(caller: str) -> None:
        guard.require_owner(caller)
        # ... privileged logic ...

    guard.require_any_of(caller, {account, mark.marked_by, guard.owner})
"""
from __future__ import annotations

import logging
from typing import Iterable

from reclaim.errors import Unauthorized

log = logging.getLogger(__name__)


class AccessGuard:
    __slots__ = ("_owner",)

    def __init__(self, owner: str) -> None:
        if not owner:
            raise ValueError("owner identity must be non-empty")
        self._owner = owner

    @property
    def owner(self) -> str:
        return self._owner

    def is_owner(self, caller: str) -> bool:
        return caller == self._owner

    def require_owner(self, caller: str) -> None:
        """Raise unless `caller` equals the owner."""
        if not self.is_owner(caller):
            log.warning("access: owner check rejected caller=%s", caller)
            raise Unauthorized("caller is not the owner", caller=caller)

    def require_any_of(self, caller: str, allowed: Iterable[str]) -> None:
        """Raise unless `caller` is one of `allowed`."""
        if caller not in set(allowed):
            log.warning("access: allow-list check rejected caller=%s", caller)
            raise Unauthorized(caller=caller)


__all__ = ["AccessGuard"]
