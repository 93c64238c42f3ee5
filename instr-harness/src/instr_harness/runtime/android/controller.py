"""adb transport.

This is the raw command transport used underneath `ConnectedDevice`. It runs
`adb` subprocesses and knows nothing about locking or logging policy: the
channel in `device.py` adds both.

Notes
-----
* Timeouts are given in seconds; `0` (or `None`) means unbounded.
* `max_time_to_output_response_s` bounds the silence *between* output chunks,
  `max_timeout_s` bounds the whole command.
"""

from __future__ import annotations

import enum
import queue
import re
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence, runtime_checkable

from instr_harness.runtime.android.receivers import ShellOutputReceiver


class AndroidControllerError(RuntimeError):
    """Raised when an adb operation fails."""


class AdbTimeoutError(AndroidControllerError):
    """The command did not finish within its overall timeout."""


class ShellCommandUnresponsiveError(AndroidControllerError):
    """The command produced no output within the time-to-output bound."""


class AdbCommandRejectedError(AndroidControllerError):
    """adb exited with a non-zero status."""


class TimeUnit(enum.Enum):
    MILLISECONDS = 0.001
    SECONDS = 1.0
    MINUTES = 60.0

    def to_seconds(self, value: float) -> float:
        return float(value) * self.value


@dataclass(frozen=True)
class AdbResult:
    args: list[str]
    stdout: str
    stderr: str
    returncode: int

    def ok(self) -> bool:
        return self.returncode == 0


@runtime_checkable
class DeviceTransport(Protocol):
    @property
    def serial(self) -> Optional[str]: ...

    @property
    def name(self) -> Optional[str]: ...

    def is_online(self) -> bool: ...

    def is_emulator(self) -> bool: ...

    def execute_shell_command(
        self,
        command: str,
        receiver: ShellOutputReceiver,
        max_timeout_s: float,
        max_time_to_output_response_s: float,
    ) -> None: ...

    def pull_file(self, remote: str, local: str) -> None: ...

    def push_file(self, local: str, remote: str) -> None: ...

    def install_package(
        self, path: str, reinstall: bool = False, extra_argument: Optional[str] = None
    ) -> None: ...

    def get_property(self, name: str) -> str: ...


_EMULATOR_SERIAL_RE = re.compile(r"^emulator-\d+$")
_POLL_INTERVAL_S = 0.05


class AdbController:
    """adb-backed `DeviceTransport` for a single serial."""

    def __init__(
        self,
        *,
        adb_path: str = "adb",
        serial: Optional[str] = None,
        name: Optional[str] = None,
        timeout_s: float = 30.0,
    ) -> None:
        self._adb_path = adb_path
        self._serial = serial
        self._name = name
        self._timeout_s = timeout_s

    @property
    def serial(self) -> Optional[str]:
        return self._serial

    @property
    def name(self) -> Optional[str]:
        if self._name is None:
            model = self.get_property("ro.product.model").strip().replace(" ", "_")
            self._name = f"{model}-{self._serial}" if model else self._serial
        return self._name

    def _base_cmd(self) -> list[str]:
        cmd = [self._adb_path]
        if self._serial:
            cmd += ["-s", self._serial]
        return cmd

    def adb(self, *args: str, timeout_s: float | None = None, check: bool = True) -> AdbResult:
        """Run an adb command and return stdout/stderr/returncode."""

        cmd = self._base_cmd() + list(args)
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout_s if timeout_s is None else float(timeout_s),
            )
        except subprocess.TimeoutExpired as e:
            raise AdbTimeoutError(f"adb command timed out: {' '.join(cmd)}") from e
        except OSError as e:
            raise AndroidControllerError(f"adb could not be started: {self._adb_path}") from e
        result = AdbResult(
            args=cmd,
            stdout=proc.stdout,
            stderr=proc.stderr,
            returncode=proc.returncode,
        )
        if check and not result.ok():
            raise AdbCommandRejectedError(
                f"adb command failed (rc={result.returncode}): {' '.join(cmd)}\n"
                f"stdout: {result.stdout}\n"
                f"stderr: {result.stderr}"
            )
        return result

    def is_online(self) -> bool:
        try:
            res = self.adb("get-state", check=False)
        except AndroidControllerError:
            return False
        return res.ok() and res.stdout.strip() == "device"

    def is_emulator(self) -> bool:
        if self._serial and _EMULATOR_SERIAL_RE.match(self._serial):
            return True
        return self.get_property("ro.kernel.qemu").strip() == "1"

    def get_property(self, name: str) -> str:
        return self.adb("shell", "getprop", name).stdout.strip()

    def execute_shell_command(
        self,
        command: str,
        receiver: ShellOutputReceiver,
        max_timeout_s: float,
        max_time_to_output_response_s: float,
    ) -> None:
        """Stream `adb shell <command>` output into `receiver`."""

        cmd = self._base_cmd() + ["shell", command]
        try:
            proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
        except OSError as e:
            raise AndroidControllerError(f"adb could not be started: {self._adb_path}") from e

        chunks: "queue.Queue[bytes | None]" = queue.Queue()

        def _pump() -> None:
            assert proc.stdout is not None
            for chunk in iter(lambda: proc.stdout.read1(4096), b""):
                chunks.put(chunk)
            chunks.put(None)

        reader = threading.Thread(target=_pump, name=f"adb-shell-{self._serial}", daemon=True)
        reader.start()

        started = time.monotonic()
        last_output = started
        try:
            while True:
                if receiver.is_cancelled():
                    break
                now = time.monotonic()
                if max_timeout_s and now - started > max_timeout_s:
                    raise AdbTimeoutError(f"shell command timed out after {max_timeout_s}s: {command}")
                if max_time_to_output_response_s and now - last_output > max_time_to_output_response_s:
                    raise ShellCommandUnresponsiveError(
                        f"no output for {max_time_to_output_response_s}s: {command}"
                    )
                try:
                    chunk = chunks.get(timeout=_POLL_INTERVAL_S)
                except queue.Empty:
                    continue
                if chunk is None:
                    break
                last_output = time.monotonic()
                receiver.add_output(chunk)
        finally:
            if proc.poll() is None:
                proc.kill()
            proc.wait()
            receiver.flush()

        if proc.returncode not in (0, None) and not receiver.is_cancelled():
            raise AdbCommandRejectedError(
                f"adb shell failed (rc={proc.returncode}): {' '.join(cmd)}"
            )

    def pull_file(self, remote: str, local: str) -> None:
        Path(local).parent.mkdir(parents=True, exist_ok=True)
        self.adb("pull", str(remote), str(local))

    def push_file(self, local: str, remote: str) -> None:
        self.adb("push", str(local), str(remote))

    def install_package(
        self, path: str, reinstall: bool = False, extra_argument: Optional[str] = None
    ) -> None:
        args: list[str] = ["install"]
        if reinstall:
            args.append("-r")
        if extra_argument:
            args.append(extra_argument)
        args.append(str(path))
        res = self.adb(*args)
        # `adb install` can exit 0 while printing "Failure [...]".
        if "Failure" in res.stdout:
            raise AdbCommandRejectedError(f"install failed: {res.stdout.strip()}")


def build_transports(
    serials: Sequence[str], *, adb_path: str = "adb", timeout_s: float = 30.0
) -> list[AdbController]:
    return [AdbController(adb_path=adb_path, serial=s, timeout_s=timeout_s) for s in serials]
