"""
Nox multi-session runner for reclaim.

Sessions:
  - lint   : ruff + black + mypy over the package
  - unit   : the reclaim test suite
  - props  : hypothesis property tests only, verbose
  - cov    : combine parallel coverage and produce reports

Pass extra args to pytest like:
  nox -s unit -- -k "claims and not props" -vv
"""

from __future__ import annotations

from pathlib import Path

import nox

# Reuse envs to speed up local iteration
nox.options.reuse_venv = True
nox.options.stop_on_first_error = False

REPO_ROOT = Path(__file__).resolve().parent
PY_PATHS = ["reclaim"]

TEST_PYTHONS = ["3.10", "3.11", "3.12"]


def _common_env(session: nox.Session) -> None:
    session.env.setdefault("PYTHONUNBUFFERED", "1")


def _install_test_stack(session: nox.Session) -> None:
    session.run("python", "-m", "pip", "install", "--upgrade", "pip", silent=True)
    session.install("-e", f"{REPO_ROOT}[test]")


@nox.session(name="lint", python="3.11")
def lint(session: nox.Session) -> None:
    """Static analysis: ruff, black (check), mypy."""
    _common_env(session)
    session.run("python", "-m", "pip", "install", "--upgrade", "pip", silent=True)
    session.install(
        "ruff>=0.6.0",
        "black>=24.3.0",
        "mypy>=1.10.0",
        "types-PyYAML",
    )
    session.install("-e", str(REPO_ROOT))

    session.run("ruff", "check", *PY_PATHS)
    session.run("black", "--check", *PY_PATHS)
    session.run(
        "mypy",
        "--pretty",
        "--show-error-codes",
        "--ignore-missing-imports",
        "--exclude",
        "reclaim/tests",
        *PY_PATHS,
    )


@nox.session(name="unit", python=TEST_PYTHONS)
def unit(session: nox.Session) -> None:
    """The full reclaim test suite."""
    _common_env(session)
    _install_test_stack(session)
    session.install("coverage>=7.4.0")
    session.run(
        "coverage", "run", "--parallel-mode", "--source", "reclaim",
        "-m", "pytest", "-q", *session.posargs,
    )


@nox.session(name="props", python="3.11")
def props(session: nox.Session) -> None:
    """Service-wide property tests (hypothesis)."""
    _common_env(session)
    _install_test_stack(session)
    session.run("pytest", "-vv", "reclaim/tests/test_invariants_props.py", *session.posargs)


@nox.session(name="cov", python="3.11")
def cov(session: nox.Session) -> None:
    """
    Combine & report coverage from parallel runs.
    Usage:
      nox -s unit-3.11 unit-3.12
      nox -s cov
    """
    session.run("python", "-m", "pip", "install", "--upgrade", "pip", silent=True)
    session.install("coverage>=7.4.0")
    with session.chdir(str(REPO_ROOT)):
        session.run("coverage", "combine")
        session.run("coverage", "report", "-m")
        session.run("coverage", "html")
