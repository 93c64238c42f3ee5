"""Coverage file retrieval.

The coverage file lives in the app's private data dir, which adb cannot pull
directly. Retrieval is three steps run while holding the device:

  1. `run-as <appId>` copy to a world-readable temp file under /data/local/tmp
  2. pull the temp file to `<out_dir>/<prefix>-coverage.ec`
  3. remove the temp file

A failing step aborts the sequence; cleanup is not attempted, so the temp file
may be left on the device.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from instr_harness.runtime.android.controller import TimeUnit
from instr_harness.runtime.android.receivers import LoggingLineReceiver

if TYPE_CHECKING:
    from instr_harness.runtime.android.device import ConnectedDevice

COVERAGE_FILE_NAME = "coverage.ec"
DEVICE_TMP_DIR = "/data/local/tmp"
COPY_TIMEOUT_MINUTES = 2
CLEANUP_TIMEOUT_SECONDS = 30


class PullCoverageError(RuntimeError):
    pass


@dataclass(frozen=True)
class CoverageRequest:
    application_id: str
    coverage_file_prefix: str
    remote_coverage_file: str
    out_dir: Path


@dataclass(frozen=True)
class CoverageArtifact:
    remote_temp_path: str
    local_path: Path


def temporary_coverage_path(application_id: str) -> str:
    return f"{DEVICE_TMP_DIR}/{application_id}.{COVERAGE_FILE_NAME}"


def local_coverage_path(out_dir: Path, coverage_file_prefix: str) -> Path:
    return Path(out_dir) / f"{coverage_file_prefix}-{COVERAGE_FILE_NAME}"


def default_remote_coverage_file(application_id: str) -> str:
    return f"/data/data/{application_id}/{COVERAGE_FILE_NAME}"


def pull_coverage_file(device: "ConnectedDevice", request: CoverageRequest) -> CoverageArtifact:
    artifact = CoverageArtifact(
        remote_temp_path=temporary_coverage_path(request.application_id),
        local_path=local_coverage_path(request.out_dir, request.coverage_file_prefix),
    )
    with device.exclusive():
        receiver = LoggingLineReceiver(device.logger)
        device.logger.info("Fetching coverage data from %s", request.remote_coverage_file)
        try:
            device.execute_shell_command(
                f"run-as {request.application_id} cat {request.remote_coverage_file}"
                f" | cat > {artifact.remote_temp_path}",
                receiver,
                COPY_TIMEOUT_MINUTES,
                TimeUnit.MINUTES,
            )
            artifact.local_path.parent.mkdir(parents=True, exist_ok=True)
            device.pull_file(artifact.remote_temp_path, artifact.local_path)
            device.execute_shell_command(
                f"rm {artifact.remote_temp_path}",
                receiver,
                CLEANUP_TIMEOUT_SECONDS,
                TimeUnit.SECONDS,
            )
        except Exception as e:
            raise PullCoverageError(
                f"pull coverage from {request.remote_coverage_file} failed: {e}"
            ) from e
    return artifact
