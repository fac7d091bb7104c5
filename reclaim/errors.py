"""
reclaim.errors
==============

Error types for account cleanup and the reward treasury. Every error is a
local, synchronous validation failure: the operation that raised it has left
all state unchanged and may be resubmitted once the request is corrected.

Errors carry a stable `code` and optional `details`, and are safe to surface
over RPC and logs via `to_dict()`.

Exports:
- ReclaimError (base)
- Unauthorized
- NotFound, AccountNotFound, SessionNotFound
- AlreadyMarked, NotMarked, ConfirmationMismatch
- InvalidAmount, InvalidMetric, InvalidInput
- InsufficientFunds, InsufficientBalance
- AlreadySettled
"""
from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional


class ReclaimError(Exception):
    """Base class for reclaim domain errors."""

    code: str = "RECLAIM_ERROR"

    def __init__(self, message: str = "", *, details: Optional[Mapping[str, Any]] = None) -> None:
        self.message = message or self.__class__.__name__
        self.details = dict(details or {})
        super().__init__(self.__str__())

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}

    def __str__(self) -> str:  # pragma: no cover - trivial
        if self.details:
            packed = json.dumps(self.details, sort_keys=True, separators=(",", ":"), default=str)
            return f"{self.code}: {self.message} [{packed}]"
        return f"{self.code}: {self.message}"


class Unauthorized(ReclaimError):
    """Caller identity is not allowed to perform the operation."""
    code = "RECLAIM_UNAUTHORIZED"

    def __init__(
        self,
        message: str = "caller is not authorized",
        *,
        caller: Optional[str] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        d = dict(details or {})
        if caller is not None:
            d.setdefault("caller", caller)
        super().__init__(message, details=d)


class NotFound(ReclaimError):
    """A referenced account, session or user does not exist."""
    code = "RECLAIM_NOT_FOUND"


class AccountNotFound(NotFound):
    code = "RECLAIM_ACCOUNT_NOT_FOUND"

    def __init__(self, account: str, *, message: str = "account record not found") -> None:
        super().__init__(message, details={"account": account})


class SessionNotFound(NotFound):
    code = "RECLAIM_SESSION_NOT_FOUND"

    def __init__(self, reporter: str, session_id: int, *, message: str = "cleanup session not found") -> None:
        super().__init__(message, details={"reporter": reporter, "session_id": int(session_id)})


class AlreadyMarked(ReclaimError):
    """The account already has an active cleanup mark."""
    code = "RECLAIM_ALREADY_MARKED"

    def __init__(self, account: str) -> None:
        super().__init__("account is already marked for cleanup", details={"account": account})


class NotMarked(ReclaimError):
    """The account has no active cleanup mark."""
    code = "RECLAIM_NOT_MARKED"

    def __init__(self, account: str) -> None:
        super().__init__("account is not marked for cleanup", details={"account": account})


class ConfirmationMismatch(ReclaimError):
    """Supplied confirmation code does not match the one given at mark time."""
    code = "RECLAIM_CONFIRMATION_MISMATCH"

    def __init__(self, account: str) -> None:
        super().__init__("confirmation code does not match", details={"account": account})


class InvalidAmount(ReclaimError):
    """An amount or reward parameter is zero, negative or out of range."""
    code = "RECLAIM_INVALID_AMOUNT"


class InvalidMetric(ReclaimError):
    """A reported cleanup count is not a positive integer."""
    code = "RECLAIM_INVALID_METRIC"


class InvalidInput(ReclaimError):
    """Malformed structural input rejected at the boundary (oversized, empty, wrong type)."""
    code = "RECLAIM_INVALID_INPUT"


class InsufficientFunds(ReclaimError):
    """The treasury pool cannot cover the requested payout."""
    code = "RECLAIM_INSUFFICIENT_FUNDS"

    def __init__(
        self,
        *,
        requested: int,
        available: int,
        message: str = "insufficient treasury funds",
    ) -> None:
        super().__init__(message, details={"requested": int(requested), "available": int(available)})


class InsufficientBalance(ReclaimError):
    """Pending reward balance is zero or cannot be covered by the pool."""
    code = "RECLAIM_INSUFFICIENT_BALANCE"

    def __init__(
        self,
        *,
        identity: str,
        pending: int,
        available: int,
        message: str = "insufficient reward balance",
    ) -> None:
        super().__init__(
            message,
            details={"identity": identity, "pending": int(pending), "available": int(available)},
        )


class AlreadySettled(ReclaimError):
    """The cleanup session has already been paid out."""
    code = "RECLAIM_ALREADY_SETTLED"

    def __init__(self, reporter: str, session_id: int) -> None:
        super().__init__(
            "cleanup session already settled",
            details={"reporter": reporter, "session_id": int(session_id)},
        )


__all__ = [
    "ReclaimError",
    "Unauthorized",
    "NotFound",
    "AccountNotFound",
    "SessionNotFound",
    "AlreadyMarked",
    "NotMarked",
    "ConfirmationMismatch",
    "InvalidAmount",
    "InvalidMetric",
    "InvalidInput",
    "InsufficientFunds",
    "InsufficientBalance",
    "AlreadySettled",
]
