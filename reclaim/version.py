from __future__ import annotations

"""
reclaim.version — package version string.

RECLAIM_VERSION in the environment overrides BASE_VERSION (useful for
packaging/CI builds that stamp a local suffix).
"""


import os

# Bump this on intentional releases.
BASE_VERSION = "0.1.0"


def build_version() -> str:
    v = os.getenv("RECLAIM_VERSION")
    return v if v else BASE_VERSION


__version__ = build_version()


__all__ = ["__version__", "BASE_VERSION"]
