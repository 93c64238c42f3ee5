from __future__ import annotations

import logging
import re
from pathlib import Path

import pytest
from fakes import FakeTransport, instrumentation_run_output

from instr_harness.commands.instrumental import ExecuteCommandError, InstrumentalTestCommand
from instr_harness.commands.listener import RunReport, TestResult, TestStatus
from instr_harness.config import InstrumentalConfig
from instr_harness.planner.elements import parse_test_names
from instr_harness.runtime.android.controller import AdbCommandRejectedError
from instr_harness.runtime.android.device import CommandExecutionError, ConnectedDevice
from instr_harness.runtime.coverage import PullCoverageError

REMOTE = "/data/data/test.appId/coverage.ec"


class _Runner:
    def __init__(self, report: RunReport, *, error: BaseException | None = None) -> None:
        self._report = report
        self._error = error
        self.runs = 0

    def run(self, listener) -> None:  # noqa: ARG002
        self.runs += 1
        if self._error is not None:
            raise self._error


class _Listener:
    def __init__(self, report: RunReport) -> None:
        self._report = report

    def run_result(self) -> RunReport:
        return self._report


class _Builder:
    def __init__(self, report: RunReport, *, error: BaseException | None = None) -> None:
        self.runner = _Runner(report, error=error)
        self.listener = _Listener(report)
        self.coverage_file = REMOTE

    def get_test_run_listener(self):
        return self.listener

    def get_test_runner(self):
        return self.runner


class _RecordingDevice:
    """Stands in for `ConnectedDevice` to count coverage-protocol invocations."""

    def __init__(self, *, coverage_error: BaseException | None = None) -> None:
        self.name = "pixel"
        self.serial_number = "SERIAL1"
        self.coverage_calls: list[tuple] = []
        self._coverage_error = coverage_error
        self.logger = logging.getLogger("test.device")

    def pull_coverage_file(self, application_id, prefix, remote, out_dir):
        self.coverage_calls.append((application_id, prefix, remote, Path(out_dir)))
        if self._coverage_error is not None:
            raise self._coverage_error
        return None


def _config(**overrides) -> InstrumentalConfig:
    data = {"application_id": "test.appId", "instrumental_package": "com.app.test"}
    data.update(overrides)
    return InstrumentalConfig.from_dict(data)


def _report(status: TestStatus) -> RunReport:
    report = RunReport(run_name="com.app.test")
    report.results["a.T#x"] = TestResult(test="a.T#x", status=status)
    return report


def _command(config: InstrumentalConfig, builder: _Builder) -> InstrumentalTestCommand:
    return InstrumentalTestCommand(
        config=config,
        plan_list=parse_test_names(["a.T#x"]),
        runner_builder_factory=lambda **kwargs: builder,
    )


def test_coverage_disabled_runs_once_without_coverage_pull() -> None:
    builder = _Builder(_report(TestStatus.PASSED))
    device = _RecordingDevice()

    result = _command(_config(), builder).execute(device)

    assert builder.runner.runs == 1
    assert device.coverage_calls == []
    assert result.failed is False
    assert result.coverage_error is None


def test_coverage_enabled_pulls_after_run_even_when_tests_fail(tmp_path) -> None:
    builder = _Builder(_report(TestStatus.FAILURE))
    device = _RecordingDevice()
    cfg = _config(coverage_enabled=True, coverage_dir=str(tmp_path))

    result = _command(cfg, builder).execute(device)

    assert builder.runner.runs == 1
    assert device.coverage_calls == [("test.appId", "pixel", REMOTE, tmp_path)]
    assert result.failed is True


def test_coverage_failure_is_reported_without_changing_test_outcome(tmp_path) -> None:
    err = PullCoverageError("pull failed")
    builder = _Builder(_report(TestStatus.PASSED))
    device = _RecordingDevice(coverage_error=err)
    cfg = _config(coverage_enabled=True, coverage_dir=str(tmp_path))

    result = _command(cfg, builder).execute(device)

    assert result.failed is False
    assert result.coverage_error is err


def test_runner_error_is_wrapped_and_skips_coverage(tmp_path) -> None:
    cause = RuntimeError("device went away")
    builder = _Builder(_report(TestStatus.PASSED), error=cause)
    device = _RecordingDevice()
    cfg = _config(coverage_enabled=True, coverage_dir=str(tmp_path))

    with pytest.raises(ExecuteCommandError) as exc_info:
        _command(cfg, builder).execute(device)

    assert exc_info.value.__cause__ is cause
    assert device.coverage_calls == []


def _class_filter(command: str) -> list[str]:
    m = re.search(r"-e class '([^']+)'", command)
    return m.group(1).split(",") if m else []


def _am_instrument_handler(statuses: dict[str, int]):
    def handler(command: str) -> str:
        tests = _class_filter(command)
        if not tests:
            return ""
        return instrumentation_run_output({t: statuses.get(t, 0) for t in tests})

    return handler


def test_end_to_end_run_on_fake_transport(tmp_path) -> None:
    transport = FakeTransport(
        name="pixel",
        shell_handler=_am_instrument_handler({"com.app.LoginTest#bad": -2}),
    )
    device = ConnectedDevice(transport)
    cfg = _config(coverage_enabled=True, coverage_dir=str(tmp_path), max_timeout_ms=60000)
    plan = parse_test_names(
        ["com.app.LoginTest#ok", "com.app.SignupTest#ok", "com.app.LoginTest#bad"]
    )

    result = InstrumentalTestCommand(config=cfg, plan_list=plan).execute(device)

    instrument_cmds = [c for c in transport.shell_commands() if c.startswith("am instrument")]
    assert len(instrument_cmds) == 1
    assert _class_filter(instrument_cmds[0]) == [
        "com.app.LoginTest#ok",
        "com.app.LoginTest#bad",
        "com.app.SignupTest#ok",
    ]
    assert f"-e coverageFile {REMOTE} -e coverage true" in instrument_cmds[0]
    assert ("shell", instrument_cmds[0], 60.0, 0.0) in transport.calls

    report = result.report
    assert result.failed is True
    assert report.results["com.app.LoginTest#ok"].status is TestStatus.PASSED
    assert report.results["com.app.LoginTest#bad"].status is TestStatus.FAILURE
    assert [(c.name, c.passed, c.failed) for c in report.compound] == [
        ("com.app.LoginTest", 1, 1),
        ("com.app.SignupTest", 1, 0),
    ]

    # Coverage is pulled once the run has finished.
    assert transport.calls[-2][0] == "pull"
    assert (tmp_path / "pixel-coverage.ec").read_bytes() == b"coverage-bytes"
    assert result.coverage_error is None


def test_end_to_end_coverage_failure_keeps_results(tmp_path) -> None:
    transport = FakeTransport(name="pixel", shell_handler=_am_instrument_handler({}))
    transport.fail_on["pull"] = AdbCommandRejectedError("remote object does not exist")
    device = ConnectedDevice(transport)
    cfg = _config(coverage_enabled=True, coverage_dir=str(tmp_path))

    result = InstrumentalTestCommand(
        config=cfg, plan_list=parse_test_names(["com.app.LoginTest#ok"])
    ).execute(device)

    assert result.failed is False
    assert isinstance(result.coverage_error, PullCoverageError)


def test_without_coverage_each_method_is_its_own_run(tmp_path) -> None:
    transport = FakeTransport(
        name="pixel", shell_handler=_am_instrument_handler({"com.app.LoginTest#bad": -2})
    )
    device = ConnectedDevice(transport)
    plan = parse_test_names(
        ["com.app.LoginTest#ok", "com.app.SignupTest#ok", "com.app.LoginTest#bad"]
    )

    result = InstrumentalTestCommand(config=_config(), plan_list=plan).execute(device)

    instrument_cmds = transport.shell_commands()
    assert [_class_filter(c) for c in instrument_cmds] == [
        ["com.app.LoginTest#ok"],
        ["com.app.LoginTest#bad"],
        ["com.app.SignupTest#ok"],
    ]
    assert not any("coverageFile" in c for c in instrument_cmds)
    assert not any(c[0] == "pull" for c in transport.calls)
    assert result.report.results["com.app.LoginTest#bad"].status is TestStatus.FAILURE
    assert result.failed is True


class _UnnamedDevice(_RecordingDevice):
    @property
    def name(self):
        raise CommandExecutionError("name", RuntimeError("getprop failed"))

    @name.setter
    def name(self, value) -> None:  # noqa: ARG002
        return None


def test_coverage_file_falls_back_to_serial_when_name_is_unavailable(tmp_path) -> None:
    builder = _Builder(_report(TestStatus.PASSED))
    device = _UnnamedDevice()
    cfg = _config(coverage_enabled=True, coverage_dir=str(tmp_path))

    result = _command(cfg, builder).execute(device)

    assert device.coverage_calls == [("test.appId", "SERIAL1", REMOTE, tmp_path)]
    assert result.coverage_error is None
