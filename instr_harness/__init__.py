"""Import shim for the src/ layout.

The real package lives under `instr-harness/src/instr_harness/`. Running
`python -m instr_harness.cli.run_tests` from the repo root works without
setting PYTHONPATH because this shim extends the package search path to the
src directory.
"""

from __future__ import annotations

from pathlib import Path

_REPO_ROOT = Path(__file__).resolve().parents[1]
_REAL_PKG = _REPO_ROOT / "instr-harness" / "src" / "instr_harness"
if _REAL_PKG.is_dir():
    __path__.append(str(_REAL_PKG))  # type: ignore[name-defined]

__all__ = [
    "cli",
    "commands",
    "config",
    "logs",
    "planner",
    "reporting",
    "runtime",
]
