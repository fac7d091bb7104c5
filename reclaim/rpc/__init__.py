from __future__ import annotations

"""
reclaim.rpc
-----------

Package marker and lightweight exports for the reclaim RPC surface:
JSON-RPC method callables (`methods.make_methods`) and the FastAPI router
(`methods.build_rest_router`), wired into a host app by `mount`.
"""

from typing import Dict, Final

# Base path under which reclaim endpoints are mounted into the node's primary API.
RPC_PREFIX: Final[str] = "/reclaim"

# Suggested OpenAPI tag used by route modules in this package.
RECLAIM_OPENAPI_TAG: Final[Dict[str, str]] = {
    "name": "reclaim",
    "description": "Account cleanup marks, cleanup reward reports, and the reward pool.",
}

__all__ = [
    "RPC_PREFIX",
    "RECLAIM_OPENAPI_TAG",
]
