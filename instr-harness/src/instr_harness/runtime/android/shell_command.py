from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from instr_harness.runtime.android.controller import TimeUnit
from instr_harness.runtime.android.receivers import NullOutputReceiver, ShellOutputReceiver

# Substrings that suggest a command carries credentials.
DEFAULT_SECURE_WORDS: tuple[str, ...] = (
    "password",
    "passwd",
    "token",
    "secret",
    "apikey",
    "api_key",
    "credential",
)


@dataclass(frozen=True)
class ShellCommand:
    """A shell command plus the text that may be written to logs in its place.

    Use `logged_command` to hide tokens/passwords from DEBUG logs; the device
    always receives `command`.
    """

    command: str
    logged_command: Optional[str] = None
    receiver: ShellOutputReceiver = field(default_factory=NullOutputReceiver)
    max_timeout: int = 0
    max_time_to_output_response: int = 0
    max_time_units: TimeUnit = TimeUnit.MILLISECONDS

    @property
    def loggable(self) -> str:
        return self.command if self.logged_command is None else self.logged_command
