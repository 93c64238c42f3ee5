from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from instr_harness.commands.instrumental import DeviceCommandResult
from instr_harness.runtime.device_pool import DeviceRunSummary


def _json_dumps_canonical(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False)


def device_result_to_dict(result: DeviceCommandResult) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "failed": bool(result.failed),
        "coverage_error": str(result.coverage_error) if result.coverage_error else None,
    }
    report = result.report
    if report is None:
        return out
    out.update(
        {
            "run_name": report.run_name,
            "elapsed_ms": report.elapsed_ms,
            "counts": report.counts(),
            "run_failures": list(report.run_failures),
            "failed_tests": sorted(
                name
                for name, r in report.results.items()
                if r.status.value in {"failure", "incomplete"}
            ),
            "compound": [
                {
                    "name": c.name,
                    "total": c.total,
                    "passed": c.passed,
                    "failed": c.failed,
                    "skipped": c.skipped,
                }
                for c in report.compound
            ],
        }
    )
    return out


def summary_to_dict(summary: DeviceRunSummary) -> Dict[str, Any]:
    return {
        "failed": summary.failed,
        "devices": {key: device_result_to_dict(r) for key, r in summary.results.items()},
        "errors": {key: f"{type(e).__name__}: {e}" for key, e in summary.errors.items()},
    }


def write_summary(path: Path, summary: DeviceRunSummary) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(_json_dumps_canonical(summary_to_dict(summary)) + "\n", encoding="utf-8")
    tmp_path.replace(path)
    return path
