"""`am instrument` test runner.

Without coverage each planned test method is dispatched as its own
`am instrument -w -r` invocation. With coverage the whole sequence goes out as
one invocation, because every instrumentation process rewrites the coverage
file when it exits. The raw status stream (`INSTRUMENTATION_STATUS*` lines)
is parsed into `RunListener` events.
"""

from __future__ import annotations

import shlex
import time
from typing import Dict, Iterable, Mapping, Optional, Sequence

from instr_harness.commands.listener import RunListener, TestRunResultCollector
from instr_harness.config import InstrumentalConfig
from instr_harness.planner.elements import TestPlanElement
from instr_harness.planner.holder import InstrumentalTestHolder
from instr_harness.runtime.android.controller import TimeUnit
from instr_harness.runtime.android.device import ConnectedDevice
from instr_harness.runtime.android.receivers import MultiLineReceiver
from instr_harness.runtime.coverage import default_remote_coverage_file

STATUS_PREFIX = "INSTRUMENTATION_STATUS: "
STATUS_CODE_PREFIX = "INSTRUMENTATION_STATUS_CODE: "
RESULT_PREFIX = "INSTRUMENTATION_RESULT: "
CODE_PREFIX = "INSTRUMENTATION_CODE: "
FAILED_PREFIX = "INSTRUMENTATION_FAILED: "

STATUS_START = 1
STATUS_OK = 0
STATUS_ERROR = -1
STATUS_FAILURE = -2
STATUS_IGNORED = -3
STATUS_ASSUMPTION_FAILURE = -4


def build_instrument_command(
    config: InstrumentalConfig,
    *,
    tests: Sequence[str] = (),
    coverage_file: Optional[str] = None,
    extra_args: Mapping[str, str] | None = None,
) -> str:
    parts: list[str] = ["am", "instrument", "-w", "-r"]
    args: Dict[str, str] = dict(config.instrumentation_args)
    args.update(extra_args or {})
    for key, value in args.items():
        parts += ["-e", shlex.quote(key), shlex.quote(value)]
    if tests:
        parts += ["-e", "class", shlex.quote(",".join(tests))]
    if coverage_file:
        parts += ["-e", "coverageFile", shlex.quote(coverage_file), "-e", "coverage", "true"]
    parts.append(f"{config.instrumental_package}/{config.instrumental_runner}")
    return " ".join(parts)


def _parse_key_value(text: str) -> tuple[str, str]:
    key, _, value = text.partition("=")
    return key.strip(), value


class InstrumentationResultReceiver(MultiLineReceiver):
    """Parses `am instrument -r` output for one dispatched test."""

    def __init__(self, listener: RunListener, *, expected_test: Optional[str] = None) -> None:
        super().__init__()
        self._listener = listener
        self._expected_test = expected_test
        self._bundle: Dict[str, str] = {}
        self._result: Dict[str, str] = {}
        self._last: Optional[Dict[str, str]] = None
        self._last_key: Optional[str] = None
        self._current_test: Optional[str] = None
        self._finished = False
        self._run_failed = False

    def _test_name(self) -> Optional[str]:
        cls = self._bundle.get("class")
        method = self._bundle.get("test")
        if cls and method:
            return f"{cls}#{method}"
        return self._current_test or self._expected_test

    def process_new_lines(self, lines: Sequence[str]) -> None:
        for line in lines:
            if line.startswith(STATUS_CODE_PREFIX):
                self._on_status_code(line[len(STATUS_CODE_PREFIX):].strip())
            elif line.startswith(STATUS_PREFIX):
                key, value = _parse_key_value(line[len(STATUS_PREFIX):])
                self._bundle[key] = value
                self._last, self._last_key = self._bundle, key
            elif line.startswith(RESULT_PREFIX):
                key, value = _parse_key_value(line[len(RESULT_PREFIX):])
                self._result[key] = value
                self._last, self._last_key = self._result, key
            elif line.startswith(CODE_PREFIX):
                self._on_run_code()
            elif line.startswith(FAILED_PREFIX):
                self._fail_run(line[len(FAILED_PREFIX):].strip())
            elif self._last is not None and self._last_key is not None:
                # Multi-line values (stack traces) continue on the following lines.
                self._last[self._last_key] += "\n" + line

    def _on_status_code(self, raw: str) -> None:
        try:
            code = int(raw)
        except ValueError:
            code = STATUS_ERROR
        test = self._test_name()
        trace = self._bundle.get("stack", "")
        if test is not None:
            if code == STATUS_START:
                self._current_test = test
                self._listener.test_started(test)
            elif code in (STATUS_FAILURE, STATUS_ERROR):
                self._listener.test_failed(test, trace)
                self._end_test(test)
            elif code == STATUS_IGNORED:
                self._listener.test_ignored(test)
                self._end_test(test)
            elif code == STATUS_ASSUMPTION_FAILURE:
                self._listener.test_assumption_failure(test, trace)
                self._end_test(test)
            elif code == STATUS_OK:
                self._end_test(test)
        self._bundle = {}
        self._last, self._last_key = None, None

    def _end_test(self, test: str) -> None:
        self._listener.test_ended(test)
        self._current_test = None

    def _on_run_code(self) -> None:
        self._finished = True
        short_msg = self._result.get("shortMsg")
        if short_msg:
            self._fail_run(short_msg.strip())

    def _fail_run(self, message: str) -> None:
        if self._current_test is not None:
            self._listener.test_failed(self._current_test, message)
            self._end_test(self._current_test)
        if not self._run_failed:
            self._run_failed = True
            self._listener.test_run_failed(message)

    def done(self) -> None:
        if not self._finished and not self._run_failed:
            self._fail_run("Test run incomplete: instrumentation output ended early")


class AmInstrumentTestRunner:
    """Dispatches planned test methods on a device.

    One invocation per method, or a single invocation for the whole sequence
    when a coverage file is requested.
    """

    def __init__(
        self,
        *,
        device: ConnectedDevice,
        config: InstrumentalConfig,
        dispatch: Iterable[TestPlanElement],
        coverage_file: Optional[str] = None,
    ) -> None:
        self._device = device
        self._config = config
        self._dispatch = dispatch
        self._coverage_file = coverage_file

    def run(self, listener: RunListener) -> None:
        tests = list(self._dispatch)
        listener.test_run_started(self._config.instrumental_package, len(tests))
        started = time.monotonic()
        if self._coverage_file:
            if tests:
                self._dispatch_batch([t.name for t in tests], listener, expected_test=None)
        else:
            for test in tests:
                self._dispatch_batch([test.name], listener, expected_test=test.name)
        listener.test_run_ended(int((time.monotonic() - started) * 1000))

    def _dispatch_batch(
        self, names: Sequence[str], listener: RunListener, *, expected_test: Optional[str]
    ) -> None:
        command = build_instrument_command(
            self._config, tests=names, coverage_file=self._coverage_file
        )
        self._device.execute_shell_command_with_timeout(
            command,
            InstrumentationResultReceiver(listener, expected_test=expected_test),
            self._config.max_timeout_ms,
            self._config.max_time_to_output_response_ms,
            TimeUnit.MILLISECONDS,
        )


class TestRunnerBuilder:
    """Wires the plan, the runner and the listener for one device run."""

    __test__ = False

    def __init__(
        self,
        *,
        config: InstrumentalConfig,
        plan_list: Sequence[TestPlanElement],
        device: ConnectedDevice,
    ) -> None:
        self._config = config
        self._plan = plan = InstrumentalTestHolder(plan_list).provide_test_plan()
        self._coverage_file = (
            config.coverage_file or default_remote_coverage_file(config.application_id)
        )
        self._listener = TestRunResultCollector(
            device_name=device.name, compound_plan=plan.compound
        )
        self._runner = AmInstrumentTestRunner(
            device=device,
            config=config,
            dispatch=plan.dispatch,
            coverage_file=self._coverage_file if config.coverage_enabled else None,
        )

    @property
    def coverage_file(self) -> str:
        return self._coverage_file

    def get_test_run_listener(self) -> TestRunResultCollector:
        return self._listener

    def get_test_runner(self) -> AmInstrumentTestRunner:
        return self._runner
