from __future__ import annotations

"""
reclaim.rpc.methods
-------------------

JSON-RPC style method implementations for account cleanup and rewards.

Exposed methods (bind via `make_methods`):
  writes (take `caller`):
  • reclaim.writeAccountData   • reclaim.mark          • reclaim.cancel
  • reclaim.confirm            • reclaim.adminForce    • reclaim.reportCleanup
  • reclaim.claimRewards       • reclaim.claimSession  • reclaim.distribute
  • reclaim.fund               • reclaim.emergencyWithdraw
  • reclaim.updateRate         • reclaim.updateBonusSettings
  reads:
  • reclaim.getAccount         • reclaim.isMarked      • reclaim.getCleanupInfo
  • reclaim.cleanupCount       • reclaim.getUserStats  • reclaim.getSession
  • reclaim.listSessions       • reclaim.getPendingReward
  • reclaim.getPoolStats       • reclaim.getGlobalStats
  • reclaim.getRewardSettings  • reclaim.previewReward • reclaim.listEvents

Design:
  - Transport-agnostic: `make_methods` returns a dict of callables with
    camelCase keyword params that a JSON-RPC dispatcher can register.
  - `build_rest_router` exposes the same callables via FastAPI; the caller
    identity is taken from the `X-Reclaim-Caller` header.
  - The caller is asserted by the transport. Authenticating it (signatures,
    sessions, API keys) is the embedding node's concern.

Usage:
    from reclaim.rpc.methods import make_methods
    methods = make_methods(service)
    methods["reclaim.reportCleanup"](caller="anim1alice", accountsCleaned=3)
"""

import logging
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Header, HTTPException, Query
from pydantic import BaseModel, Field

from reclaim.errors import (
    AlreadyMarked,
    AlreadySettled,
    ConfirmationMismatch,
    InvalidInput,
    NotFound,
    NotMarked,
    ReclaimError,
    Unauthorized,
)
from reclaim.events import EventKind
from reclaim.service import ReclaimService

log = logging.getLogger(__name__)

CALLER_HEADER = "X-Reclaim-Caller"


# ---- Helpers ---------------------------------------------------------------

def http_status_for(err: ReclaimError) -> int:
    """Map a domain error to an HTTP status code."""
    if isinstance(err, Unauthorized):
        return 403
    if isinstance(err, NotFound):
        return 404
    if isinstance(err, (AlreadyMarked, NotMarked, AlreadySettled, ConfirmationMismatch)):
        return 409
    return 400


def _coerce_int(value: Any, name: str, *, minimum: int = 0) -> int:
    if isinstance(value, bool):
        raise InvalidInput(f"invalid {name}: must be an integer", details={"field": name})
    try:
        iv = int(value)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"invalid {name}: must be an integer", details={"field": name}) from e
    if iv < minimum:
        raise InvalidInput(f"invalid {name}: must be >= {minimum}", details={"field": name})
    return iv


def _coerce_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise InvalidInput(f"invalid {name}: must be a boolean", details={"field": name})
    return value


def _decode_payload(payload: Optional[str], payload_hex: Optional[str]) -> bytes:
    if payload_hex is not None:
        h = payload_hex[2:] if payload_hex.startswith(("0x", "0X")) else payload_hex
        try:
            return bytes.fromhex(h)
        except ValueError as e:
            raise InvalidInput("payloadHex is not valid hex", details={"field": "payloadHex"}) from e
    if payload is None:
        raise InvalidInput("payload or payloadHex is required", details={"field": "payload"})
    return payload.encode("utf-8")


def _parse_kind(kind: Optional[str]) -> Optional[EventKind]:
    if kind is None:
        return None
    try:
        return EventKind(kind)
    except ValueError as e:
        allowed = ", ".join(k.value for k in EventKind)
        raise InvalidInput(f"invalid event kind {kind!r}, allowed: {allowed}", details={"field": "kind"}) from e


# ---- JSON-RPC method factory ----------------------------------------------

def make_methods(service: ReclaimService) -> Dict[str, Callable[..., Any]]:
    """
    Build a mapping of JSON-RPC method name -> callable.
    Each callable returns plain JSON-serializable structures.
    """

    # -- cleanup registry --

    def write_account_data(*, caller: str, payload: Optional[str] = None, payloadHex: Optional[str] = None):
        return service.write_account_data(caller, _decode_payload(payload, payloadHex)).to_dict()

    def mark(*, caller: str, account: str, confirmationCode: str):
        return service.mark(caller, account, confirmationCode).to_dict()

    def cancel(*, caller: str, account: str):
        return service.cancel(caller, account).to_dict()

    def confirm(*, caller: str, account: str, confirmationCode: str):
        rec = service.confirm(caller, account, confirmationCode)
        return {"account": rec.account, "removed": True}

    def admin_force(*, caller: str, account: str):
        rec = service.admin_force(caller, account)
        return {"account": rec.account, "removed": True}

    # -- rewards --

    def report_cleanup(*, caller: str, accountsCleaned: int):
        n = _coerce_int(accountsCleaned, "accountsCleaned")
        return service.report_cleanup(caller, n).to_dict()

    def claim_rewards(*, caller: str):
        return service.claim_rewards(caller).to_dict()

    def claim_session(*, caller: str, sessionId: int):
        return service.claim_session(caller, _coerce_int(sessionId, "sessionId", minimum=1)).to_dict()

    def distribute(*, caller: str, target: str, sessionId: int):
        return service.distribute(caller, target, _coerce_int(sessionId, "sessionId", minimum=1)).to_dict()

    # -- treasury / parameters --

    def fund(*, caller: str, amount: int):
        return service.fund(caller, _coerce_int(amount, "amount")).to_dict()

    def emergency_withdraw(*, caller: str, amount: int):
        return service.emergency_withdraw(caller, _coerce_int(amount, "amount")).to_dict()

    def update_rate(*, caller: str, rate: int):
        return service.update_rate(caller, _coerce_int(rate, "rate")).to_dict()

    def update_bonus_settings(
        *,
        caller: str,
        bonusMultiplier: int,
        bonusThreshold: int,
        mode: Optional[str] = None,
    ):
        return service.update_bonus_settings(
            caller,
            _coerce_int(bonusMultiplier, "bonusMultiplier"),
            _coerce_int(bonusThreshold, "bonusThreshold"),
            mode,
        ).to_dict()

    # -- reads --

    def get_account(*, account: str):
        rec = service.get_account(account)
        return rec.to_dict() if rec is not None else None

    def is_marked(*, account: str):
        return {"account": account, "marked": service.is_marked(account)}

    def get_cleanup_info(*, account: str):
        m = service.get_cleanup_info(account)
        return m.to_dict() if m is not None else None

    def cleanup_count():
        return {"count": service.cleanup_count()}

    def get_user_stats(*, identity: str):
        return service.get_user_stats(identity).to_dict()

    def get_session(*, reporter: str, sessionId: int):
        s = service.get_session(reporter, _coerce_int(sessionId, "sessionId", minimum=1))
        return s.to_dict() if s is not None else None

    def list_sessions(*, reporter: str, unsettledOnly: bool = False):
        only = _coerce_bool(unsettledOnly, "unsettledOnly")
        items = [s.to_dict() for s in service.list_sessions(reporter, unsettled_only=only)]
        return {"items": items}

    def get_pending_reward(*, identity: str):
        return {"identity": identity, "pending": service.get_pending_reward(identity)}

    def get_pool_stats():
        return service.get_pool_stats().to_dict()

    def get_global_stats():
        return service.get_global_stats()

    def get_reward_settings():
        return service.get_reward_settings().to_dict()

    def preview_reward(
        *,
        accountsCleaned: int,
        identity: Optional[str] = None,
        priorCumulative: Optional[int] = None,
    ):
        prior = None if priorCumulative is None else _coerce_int(priorCumulative, "priorCumulative")
        out = service.preview_reward(
            _coerce_int(accountsCleaned, "accountsCleaned"),
            identity=identity,
            prior_cumulative=prior,
        )
        return out.to_dict()

    def list_events(*, kind: Optional[str] = None, sinceSeq: int = 0):
        evs = service.events(kind=_parse_kind(kind), since_seq=_coerce_int(sinceSeq, "sinceSeq"))
        return {"items": [e.to_dict() for e in evs]}

    return {
        "reclaim.writeAccountData": write_account_data,
        "reclaim.mark": mark,
        "reclaim.cancel": cancel,
        "reclaim.confirm": confirm,
        "reclaim.adminForce": admin_force,
        "reclaim.reportCleanup": report_cleanup,
        "reclaim.claimRewards": claim_rewards,
        "reclaim.claimSession": claim_session,
        "reclaim.distribute": distribute,
        "reclaim.fund": fund,
        "reclaim.emergencyWithdraw": emergency_withdraw,
        "reclaim.updateRate": update_rate,
        "reclaim.updateBonusSettings": update_bonus_settings,
        "reclaim.getAccount": get_account,
        "reclaim.isMarked": is_marked,
        "reclaim.getCleanupInfo": get_cleanup_info,
        "reclaim.cleanupCount": cleanup_count,
        "reclaim.getUserStats": get_user_stats,
        "reclaim.getSession": get_session,
        "reclaim.listSessions": list_sessions,
        "reclaim.getPendingReward": get_pending_reward,
        "reclaim.getPoolStats": get_pool_stats,
        "reclaim.getGlobalStats": get_global_stats,
        "reclaim.getRewardSettings": get_reward_settings,
        "reclaim.previewReward": preview_reward,
        "reclaim.listEvents": list_events,
    }


# ---- REST adapter (FastAPI) ------------------------------------------------

class WriteReq(BaseModel):
    payload: Optional[str] = Field(None, description="UTF-8 payload")
    payloadHex: Optional[str] = Field(None, description="Hex payload (0x prefix optional)")


class CodeReq(BaseModel):
    confirmationCode: str


class ReportReq(BaseModel):
    accountsCleaned: int


class AmountReq(BaseModel):
    amount: int


class RateReq(BaseModel):
    rate: int


class BonusReq(BaseModel):
    bonusMultiplier: int
    bonusThreshold: int
    mode: Optional[str] = None


def build_rest_router(service: ReclaimService):
    """
    Return a FastAPI APIRouter exposing the methods over REST.
    Mount path suggestion: f"{RPC_PREFIX}" (import from reclaim.rpc).
    """
    m = make_methods(service)
    router = APIRouter()

    def call(name: str, **kwargs: Any) -> Any:
        try:
            return m[name](**kwargs)
        except ReclaimError as e:
            raise HTTPException(status_code=http_status_for(e), detail=e.to_dict()) from e

    def found(value: Any, what: str) -> Any:
        if value is None:
            raise HTTPException(status_code=404, detail={"code": "RECLAIM_NOT_FOUND", "message": f"{what} not found"})
        return value

    caller_header = Header(..., alias=CALLER_HEADER)

    # -- writes --

    @router.put("/accounts/me")
    def http_write_account(req: WriteReq, caller: str = caller_header):
        return call("reclaim.writeAccountData", caller=caller, payload=req.payload, payloadHex=req.payloadHex)

    @router.post("/accounts/{account}/mark")
    def http_mark(account: str, req: CodeReq, caller: str = caller_header):
        return call("reclaim.mark", caller=caller, account=account, confirmationCode=req.confirmationCode)

    @router.post("/accounts/{account}/cancel")
    def http_cancel(account: str, caller: str = caller_header):
        return call("reclaim.cancel", caller=caller, account=account)

    @router.post("/accounts/{account}/confirm")
    def http_confirm(account: str, req: CodeReq, caller: str = caller_header):
        return call("reclaim.confirm", caller=caller, account=account, confirmationCode=req.confirmationCode)

    @router.post("/accounts/{account}/force")
    def http_admin_force(account: str, caller: str = caller_header):
        return call("reclaim.adminForce", caller=caller, account=account)

    @router.post("/reports")
    def http_report(req: ReportReq, caller: str = caller_header):
        return call("reclaim.reportCleanup", caller=caller, accountsCleaned=req.accountsCleaned)

    @router.post("/claims")
    def http_claim_rewards(caller: str = caller_header):
        return call("reclaim.claimRewards", caller=caller)

    @router.post("/sessions/{session_id}/claim")
    def http_claim_session(session_id: int, caller: str = caller_header):
        return call("reclaim.claimSession", caller=caller, sessionId=session_id)

    @router.post("/users/{target}/sessions/{session_id}/distribute")
    def http_distribute(target: str, session_id: int, caller: str = caller_header):
        return call("reclaim.distribute", caller=caller, target=target, sessionId=session_id)

    @router.post("/pool/fund")
    def http_fund(req: AmountReq, caller: str = caller_header):
        return call("reclaim.fund", caller=caller, amount=req.amount)

    @router.post("/pool/emergency-withdraw")
    def http_emergency_withdraw(req: AmountReq, caller: str = caller_header):
        return call("reclaim.emergencyWithdraw", caller=caller, amount=req.amount)

    @router.put("/settings/rate")
    def http_update_rate(req: RateReq, caller: str = caller_header):
        return call("reclaim.updateRate", caller=caller, rate=req.rate)

    @router.put("/settings/bonus")
    def http_update_bonus(req: BonusReq, caller: str = caller_header):
        return call(
            "reclaim.updateBonusSettings",
            caller=caller,
            bonusMultiplier=req.bonusMultiplier,
            bonusThreshold=req.bonusThreshold,
            mode=req.mode,
        )

    # -- reads --

    @router.get("/accounts/{account}")
    def http_get_account(account: str):
        return found(call("reclaim.getAccount", account=account), "account")

    @router.get("/accounts/{account}/cleanup")
    def http_get_cleanup_info(account: str):
        return found(call("reclaim.getCleanupInfo", account=account), "cleanup mark")

    @router.get("/cleanup/count")
    def http_cleanup_count():
        return call("reclaim.cleanupCount")

    @router.get("/users/{identity}/stats")
    def http_user_stats(identity: str):
        return call("reclaim.getUserStats", identity=identity)

    @router.get("/users/{identity}/pending")
    def http_pending(identity: str):
        return call("reclaim.getPendingReward", identity=identity)

    @router.get("/users/{identity}/sessions")
    def http_list_sessions(identity: str, unsettledOnly: bool = False):
        return call("reclaim.listSessions", reporter=identity, unsettledOnly=unsettledOnly)

    @router.get("/users/{identity}/sessions/{session_id}")
    def http_get_session(identity: str, session_id: int):
        return found(call("reclaim.getSession", reporter=identity, sessionId=session_id), "session")

    @router.get("/pool")
    def http_pool():
        return call("reclaim.getPoolStats")

    @router.get("/stats")
    def http_global_stats():
        return call("reclaim.getGlobalStats")

    @router.get("/settings")
    def http_settings():
        return call("reclaim.getRewardSettings")

    @router.get("/preview")
    def http_preview(
        accountsCleaned: int = Query(..., ge=1),
        identity: Optional[str] = None,
        priorCumulative: Optional[int] = Query(None, ge=0),
    ):
        return call(
            "reclaim.previewReward",
            accountsCleaned=accountsCleaned,
            identity=identity,
            priorCumulative=priorCumulative,
        )

    @router.get("/events")
    def http_events(kind: Optional[str] = None, sinceSeq: int = Query(0, ge=0)):
        return call("reclaim.listEvents", kind=kind, sinceSeq=sinceSeq)

    return router


__all__ = [
    "CALLER_HEADER",
    "http_status_for",
    "make_methods",
    "build_rest_router",
]
