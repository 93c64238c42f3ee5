from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from instr_harness.commands.listener import RunReport
from instr_harness.commands.runner import TestRunnerBuilder
from instr_harness.config import InstrumentalConfig
from instr_harness.planner.elements import TestPlanElement
from instr_harness.runtime.android.device import CommandExecutionError, ConnectedDevice
from instr_harness.runtime.coverage import PullCoverageError

logger = logging.getLogger(__name__)


class ExecuteCommandError(RuntimeError):
    pass


@dataclass
class DeviceCommandResult:
    failed: bool
    report: Optional[RunReport] = None
    coverage_error: Optional[PullCoverageError] = None


# Called with config=, plan_list=, device=; returns an object shaped like TestRunnerBuilder.
RunnerBuilderFactory = Callable[..., Any]


class InstrumentalTestCommand:
    """Executes instrumentation tests on one connected device."""

    def __init__(
        self,
        *,
        config: InstrumentalConfig,
        plan_list: Sequence[TestPlanElement],
        runner_builder_factory: RunnerBuilderFactory = TestRunnerBuilder,
    ) -> None:
        self._config = config
        self._plan_list = list(plan_list)
        self._runner_builder_factory = runner_builder_factory

    def execute(self, target_device: ConnectedDevice) -> DeviceCommandResult:
        try:
            builder = self._runner_builder_factory(
                config=self._config, plan_list=self._plan_list, device=target_device
            )
            listener = builder.get_test_run_listener()
            builder.get_test_runner().run(listener)
            report = listener.run_result()
        except Exception as e:
            logger.exception(
                "InstrumentalTestCommand.execute failed on %s", target_device.serial_number
            )
            raise ExecuteCommandError(f"InstrumentalTestCommand.execute failed: {e}") from e

        result = DeviceCommandResult(
            failed=report.has_failed_tests() or report.is_run_failure,
            report=report,
        )

        if self._config.coverage_enabled:
            try:
                target_device.pull_coverage_file(
                    self._config.application_id,
                    _coverage_prefix(target_device),
                    builder.coverage_file,
                    self._config.coverage_dir,
                )
            except PullCoverageError as e:
                target_device.logger.error("pull coverage failed: %s", e)
                result.coverage_error = e
        return result


def _coverage_prefix(device: ConnectedDevice) -> str:
    try:
        name = device.name
    except CommandExecutionError as e:
        device.logger.warning("device name unavailable, naming coverage file by serial: %s", e)
        name = None
    return name or device.serial_number or "device"
