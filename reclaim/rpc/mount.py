from __future__ import annotations

"""
reclaim.rpc.mount
-----------------

Helpers to mount the reclaim RPC surface into an existing FastAPI app and/or
to register the JSON-RPC methods with your dispatcher.

Typical usage (REST):
    from fastapi import FastAPI
    from reclaim.rpc.mount import mount_reclaim
    app = FastAPI()
    mount_reclaim(app, service, prefix="/reclaim", with_metrics=True)

Typical usage (JSON-RPC):
    from reclaim.rpc.mount import register_jsonrpc
    register_jsonrpc(dispatcher, service)

No hard dependency on a specific JSON-RPC framework: we expect a dispatcher
with a `.add(name, callable)` or `.register(name, callable)` API.
"""

import logging
from typing import Any, Protocol

from fastapi import FastAPI

from reclaim import metrics
from reclaim.rpc import RECLAIM_OPENAPI_TAG, RPC_PREFIX
from reclaim.service import ReclaimService

from .methods import build_rest_router, make_methods

log = logging.getLogger(__name__)


class _JsonRpcDispatcherLike(Protocol):
    """Minimal protocol to support common JSON-RPC dispatchers."""
    def add(self, method: str, func: Any) -> None: ...
    def register(self, method: str, func: Any) -> None: ...


def mount_reclaim(
    app: FastAPI,
    service: ReclaimService,
    *,
    prefix: str = RPC_PREFIX,
    with_metrics: bool = False,
) -> None:
    """
    Mount the reclaim REST endpoints under `prefix` on a FastAPI app.

    With `with_metrics=True`, the Prometheus exposition for the reclaim
    registry is also mounted at f"{prefix}/metrics".
    """
    app.include_router(build_rest_router(service), prefix=prefix, tags=[RECLAIM_OPENAPI_TAG["name"]])
    if with_metrics:
        app.mount(f"{prefix}/metrics", metrics.metrics_app())
    log.info("rpc: mounted reclaim REST router at %s (metrics=%s)", prefix, with_metrics)


def register_jsonrpc(dispatcher: _JsonRpcDispatcherLike, service: ReclaimService) -> int:
    """
    Register JSON-RPC methods on a dispatcher and return how many were added.

    We try `.add(name, fn)` first and fall back to `.register(name, fn)`.
    """
    methods = make_methods(service)
    for name, fn in methods.items():
        add = getattr(dispatcher, "add", None)
        if callable(add):
            add(name, fn)
        else:
            dispatcher.register(name, fn)
    return len(methods)


__all__ = ["mount_reclaim", "register_jsonrpc"]
