from __future__ import annotations

import threading
import time

import pytest
from fakes import FakeTransport

from instr_harness.runtime.android.controller import AdbCommandRejectedError, AdbTimeoutError
from instr_harness.runtime.android.device import CommandExecutionError, ConnectedDevice
from instr_harness.runtime.coverage import (
    PullCoverageError,
    default_remote_coverage_file,
    local_coverage_path,
    temporary_coverage_path,
)

APP_ID = "test.appId"
REMOTE = "/data/data/test.appId/coverage.ec"
TMP = "/data/local/tmp/test.appId.coverage.ec"
COPY_CMD = f"run-as {APP_ID} cat {REMOTE} | cat > {TMP}"
RM_CMD = f"rm {TMP}"


def test_coverage_paths() -> None:
    assert temporary_coverage_path(APP_ID) == TMP
    assert default_remote_coverage_file(APP_ID) == REMOTE
    assert str(local_coverage_path("out", "pixel")).endswith("pixel-coverage.ec")


def test_pull_coverage_runs_copy_pull_cleanup_in_order(tmp_path) -> None:
    transport = FakeTransport()
    device = ConnectedDevice(transport)
    out_dir = tmp_path / "coverage"

    artifact = device.pull_coverage_file(APP_ID, "pixel", REMOTE, out_dir)

    local = str(out_dir / "pixel-coverage.ec")
    assert transport.calls == [
        ("shell", COPY_CMD, 0.0, 120.0),
        ("pull", TMP, local),
        ("shell", RM_CMD, 0.0, 30.0),
    ]
    assert artifact.remote_temp_path == TMP
    assert artifact.local_path == out_dir / "pixel-coverage.ec"
    assert artifact.local_path.read_bytes() == b"coverage-bytes"


def test_pull_failure_skips_cleanup(tmp_path) -> None:
    transport = FakeTransport()
    cause = AdbCommandRejectedError("remote object does not exist")
    transport.fail_on["pull"] = cause
    device = ConnectedDevice(transport)

    with pytest.raises(PullCoverageError) as exc_info:
        device.pull_coverage_file(APP_ID, "pixel", REMOTE, tmp_path)

    assert [c[0] for c in transport.calls] == ["shell", "pull"]
    assert RM_CMD not in transport.shell_commands()
    wrapped = exc_info.value.__cause__
    assert isinstance(wrapped, CommandExecutionError)
    assert wrapped.cause is cause


def test_copy_failure_skips_pull_and_cleanup(tmp_path) -> None:
    transport = FakeTransport()
    transport.fail_on[COPY_CMD] = AdbTimeoutError("run-as hung")
    device = ConnectedDevice(transport)

    with pytest.raises(PullCoverageError):
        device.pull_coverage_file(APP_ID, "pixel", REMOTE, tmp_path)

    assert transport.calls == [("shell", COPY_CMD, 0.0, 120.0)]


def test_pull_coverage_holds_the_device_across_all_steps(tmp_path) -> None:
    started = threading.Event()
    holder: dict[str, ConnectedDevice] = {}

    def on_shell(command: str) -> str:
        if command == COPY_CMD:
            other = threading.Thread(target=lambda: holder["device"].run_shell_command("echo hi"))
            holder["thread"] = other
            other.start()
            started.set()
            # Give the other caller time to block on the device lock.
            time.sleep(0.05)
        return ""

    transport = FakeTransport(shell_handler=on_shell)
    device = ConnectedDevice(transport)
    holder["device"] = device

    device.pull_coverage_file(APP_ID, "pixel", REMOTE, tmp_path)
    assert started.is_set()
    holder["thread"].join(timeout=5)

    kinds = [(c[0], c[1]) for c in transport.calls]
    assert kinds == [
        ("shell", COPY_CMD),
        ("pull", TMP),
        ("shell", RM_CMD),
        ("shell", "echo hi"),
    ]
