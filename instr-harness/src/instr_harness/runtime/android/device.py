"""Serialized command channel for one connected device.

`ConnectedDevice` wraps a `DeviceTransport` and adds:
  * mutual exclusion (one in-flight adb operation per device, whatever the caller)
  * per-device logging of every command
  * advisory warnings for commands that look like they carry secrets
  * lazily computed screen metrics
  * coverage file retrieval (see `instr_harness.runtime.coverage`)

Every public operation takes the same reentrant lock for its whole duration.
Multi-step sequences that must not interleave with other callers use
`exclusive()`.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional

from instr_harness.logs import DeviceLoggerAdapter
from instr_harness.runtime import coverage
from instr_harness.runtime.android.controller import DeviceTransport, TimeUnit
from instr_harness.runtime.android.receivers import CollectingOutputReceiver, ShellOutputReceiver
from instr_harness.runtime.android.screen import (
    ScreenMetrics,
    ScreenSizeParseError,
    parse_density,
    parse_density_property,
    parse_screen_size,
)
from instr_harness.runtime.android.shell_command import DEFAULT_SECURE_WORDS, ShellCommand

logger = logging.getLogger(__name__)

SCREEN_SIZE_COMMAND = "dumpsys window"
DENSITY_PROPERTY = "ro.sf.lcd_density"
DEFAULT_OUTPUT_RESPONSE_MINUTES = 5


class CommandExecutionError(RuntimeError):
    """A channel operation failed; `cause` is the transport error."""

    def __init__(self, operation: str, cause: BaseException) -> None:
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


class ConnectedDevice:
    def __init__(
        self,
        transport: DeviceTransport,
        *,
        secure_words: Iterable[str] = DEFAULT_SECURE_WORDS,
    ) -> None:
        self._transport = transport
        self._secure_words = tuple(w for w in secure_words if w)
        self._lock = threading.RLock()
        self._metrics: Optional[ScreenMetrics] = None
        self._logger: Optional[DeviceLoggerAdapter] = None

    @contextmanager
    def exclusive(self) -> Iterator["ConnectedDevice"]:
        """Hold the device for a sequence of operations."""
        with self._lock:
            yield self

    @property
    def transport(self) -> DeviceTransport:
        return self._transport

    @property
    def logger(self) -> DeviceLoggerAdapter:
        """Adapter labelled with the serial; the name is only used when there is no serial."""
        with self._lock:
            if self._logger is None:
                self._logger = DeviceLoggerAdapter(logger, self._log_label())
            return self._logger

    def _log_label(self) -> Optional[str]:
        serial = self._transport.serial
        if serial is not None:
            return serial
        try:
            return self._transport.name
        except Exception as e:
            logger.debug("device name unavailable for log label: %s", e)
            return None

    @property
    def name(self) -> Optional[str]:
        with self._lock:
            try:
                return self._transport.name
            except Exception as e:
                raise CommandExecutionError("name", e) from e

    @property
    def serial_number(self) -> Optional[str]:
        with self._lock:
            return self._transport.serial

    def is_online(self) -> bool:
        with self._lock:
            return self._transport.is_online()

    def is_emulator(self) -> bool:
        with self._lock:
            return self._transport.is_emulator()

    # ------------------------------- Shell -------------------------------

    def _warn_on_secure_words(self, command: str) -> None:
        lowered = command.lower()
        for word in self._secure_words:
            if word.lower() in lowered:
                self.logger.warning(
                    'Shell command contains secure word "%s" and likely carries secret data, '
                    "which appears in logs at DEBUG level. Use execute_shell_command_logged() "
                    "with a sanitized logged command instead.",
                    word,
                )

    def _execute(
        self,
        operation: str,
        command: str,
        logged_command: str,
        receiver: ShellOutputReceiver,
        max_timeout: float,
        max_time_to_output_response: float,
        max_time_units: TimeUnit,
    ) -> None:
        with self._lock:
            try:
                self.logger.debug('Execute shell command "%s"', logged_command)
                self._transport.execute_shell_command(
                    command,
                    receiver,
                    max_time_units.to_seconds(max_timeout),
                    max_time_units.to_seconds(max_time_to_output_response),
                )
            except Exception as e:
                raise CommandExecutionError(operation, e) from e

    def execute_shell_command(
        self,
        command: str,
        receiver: ShellOutputReceiver,
        max_time_to_output_response: float,
        max_time_units: TimeUnit = TimeUnit.MILLISECONDS,
    ) -> None:
        with self._lock:
            self._warn_on_secure_words(command)
            self._execute(
                "execute_shell_command",
                command,
                command,
                receiver,
                0,
                max_time_to_output_response,
                max_time_units,
            )

    def execute_shell_command_with_timeout(
        self,
        command: str,
        receiver: ShellOutputReceiver,
        max_timeout: float,
        max_time_to_output_response: float,
        max_time_units: TimeUnit = TimeUnit.MILLISECONDS,
    ) -> None:
        with self._lock:
            self._warn_on_secure_words(command)
            self._execute(
                "execute_shell_command",
                command,
                command,
                receiver,
                max_timeout,
                max_time_to_output_response,
                max_time_units,
            )

    def execute_shell_command_logged(
        self,
        command: str,
        logged_command: str,
        receiver: ShellOutputReceiver,
        max_timeout: float,
        max_time_to_output_response: float,
        max_time_units: TimeUnit = TimeUnit.MILLISECONDS,
    ) -> None:
        """Same as `execute_shell_command_with_timeout` but logs `logged_command`.

        Erase tokens, passwords and other secrets from `logged_command`; the
        device still receives `command` unchanged.
        """
        self._execute(
            "execute_shell_command",
            command,
            logged_command,
            receiver,
            max_timeout,
            max_time_to_output_response,
            max_time_units,
        )

    def execute(self, shell_command: ShellCommand) -> None:
        self._execute(
            "execute_shell_command",
            shell_command.command,
            shell_command.loggable,
            shell_command.receiver,
            shell_command.max_timeout,
            shell_command.max_time_to_output_response,
            shell_command.max_time_units,
        )

    def execute_shell_command_and_return_output(self, command: str) -> str:
        receiver = CollectingOutputReceiver()
        self.execute_shell_command(
            command, receiver, DEFAULT_OUTPUT_RESPONSE_MINUTES, TimeUnit.MINUTES
        )
        return receiver.output

    def run_shell_command(self, command: str) -> None:
        self.execute_shell_command_and_return_output(command)

    # ------------------------------- Files -------------------------------

    def pull_file(self, remote: str, local: str | Path) -> None:
        with self._lock:
            self.logger.debug('Pull file "%s" -> "%s"', remote, local)
            try:
                self._transport.pull_file(str(remote), str(local))
            except Exception as e:
                raise CommandExecutionError("pull_file", e) from e

    def push_file(self, local: str | Path, remote: str) -> None:
        with self._lock:
            self.logger.debug('Push file "%s" -> "%s"', local, remote)
            try:
                self._transport.push_file(str(local), str(remote))
            except Exception as e:
                raise CommandExecutionError("push_file", e) from e

    def install_package(
        self, path: str | Path, reinstall: bool = False, extra_argument: Optional[str] = None
    ) -> None:
        with self._lock:
            self.logger.debug('Install package "%s"', path)
            try:
                self._transport.install_package(str(path), reinstall, extra_argument)
            except Exception as e:
                raise CommandExecutionError("install_package", e) from e

    def get_system_property(self, name: str) -> "Future[str]":
        """Resolved future holding the property value (or a CommandExecutionError)."""

        result: "Future[str]" = Future()
        with self._lock:
            try:
                result.set_result(self._transport.get_property(name))
            except Exception as e:
                err = CommandExecutionError("get_system_property", e)
                err.__cause__ = e
                result.set_exception(err)
        return result

    def pull_coverage_file(
        self,
        application_id: str,
        coverage_file_prefix: str,
        remote_coverage_file: str,
        out_dir: str | Path,
    ) -> coverage.CoverageArtifact:
        request = coverage.CoverageRequest(
            application_id=application_id,
            coverage_file_prefix=coverage_file_prefix,
            remote_coverage_file=remote_coverage_file,
            out_dir=Path(out_dir),
        )
        return coverage.pull_coverage_file(self, request)

    # ---------------------------- Screen metrics ----------------------------

    def screen_metrics(self) -> ScreenMetrics:
        with self._lock:
            if self._metrics is None:
                self._metrics = self._compute_screen_metrics()
            return self._metrics

    def _compute_screen_metrics(self) -> ScreenMetrics:
        try:
            dump = self.execute_shell_command_and_return_output(SCREEN_SIZE_COMMAND)
            width, height = parse_screen_size(dump)
        except (CommandExecutionError, ScreenSizeParseError):
            self.logger.error("calculate screen size error", exc_info=True)
            return ScreenMetrics.UNKNOWN
        density = parse_density(dump)
        if density is None:
            density = self._query_density()
        return ScreenMetrics(width=width, height=height, density=density)

    def _query_density(self) -> Optional[int]:
        try:
            raw = self.get_system_property(DENSITY_PROPERTY).result()
        except CommandExecutionError:
            self.logger.error("density query error", exc_info=True)
            return None
        density = parse_density_property(raw)
        if density is None:
            self.logger.error("unexpected %s value: %r", DENSITY_PROPERTY, raw)
        return density

    def get_width(self) -> Optional[int]:
        return self.screen_metrics().width

    def get_height(self) -> Optional[int]:
        return self.screen_metrics().height

    def get_density(self) -> Optional[int]:
        return self.screen_metrics().density

    def get_width_in_dp(self) -> Optional[int]:
        return self.screen_metrics().width_in_dp()

    def get_height_in_dp(self) -> Optional[int]:
        return self.screen_metrics().height_in_dp()

    # ------------------------------- Identity -------------------------------

    def __eq__(self, other: object) -> bool:
        if other is self:
            return True
        if not isinstance(other, ConnectedDevice):
            return NotImplemented
        serial, other_serial = self.serial_number, other.serial_number
        if serial is not None and other_serial is not None:
            return serial == other_serial
        if serial is None and other_serial is None:
            name = self.name
            return name is not None and name == other.name
        return False

    def __hash__(self) -> int:
        serial = self.serial_number
        return hash(("serial", serial)) if serial is not None else hash(("name", self.name))

    def __repr__(self) -> str:
        return f"ConnectedDevice(sn={self._transport.serial!r})"
