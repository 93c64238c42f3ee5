from __future__ import annotations

import codecs
import logging
from typing import Protocol, Sequence, runtime_checkable


def _utf8_decoder() -> codecs.IncrementalDecoder:
    # A multi-byte character may straddle two chunks.
    return codecs.getincrementaldecoder("utf-8")(errors="replace")


@runtime_checkable
class ShellOutputReceiver(Protocol):
    def add_output(self, data: bytes) -> None: ...

    def flush(self) -> None: ...

    def is_cancelled(self) -> bool: ...


class NullOutputReceiver:
    def add_output(self, data: bytes) -> None:  # noqa: ARG002
        return None

    def flush(self) -> None:
        return None

    def is_cancelled(self) -> bool:
        return False


class CollectingOutputReceiver:
    """Accumulates the whole command output as text."""

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._decoder = _utf8_decoder()

    def add_output(self, data: bytes) -> None:
        self._parts.append(self._decoder.decode(data))

    def flush(self) -> None:
        self._parts.append(self._decoder.decode(b"", final=True))

    def is_cancelled(self) -> bool:
        return False

    @property
    def output(self) -> str:
        return "".join(self._parts)


class MultiLineReceiver:
    """Splits streamed output into lines and hands complete lines to `process_new_lines`.

    A trailing partial line is buffered until the next chunk (or `flush`).
    Carriage returns from the device pty are dropped.
    """

    def __init__(self) -> None:
        self._pending = ""
        self._decoder = _utf8_decoder()

    def add_output(self, data: bytes) -> None:
        self._split(self._decoder.decode(data))

    def _split(self, decoded: str) -> None:
        text = self._pending + decoded.replace("\r", "")
        lines = text.split("\n")
        self._pending = lines.pop()
        if lines:
            self.process_new_lines(lines)

    def flush(self) -> None:
        self._split(self._decoder.decode(b"", final=True))
        if self._pending:
            pending, self._pending = self._pending, ""
            self.process_new_lines([pending])
        self.done()

    def is_cancelled(self) -> bool:
        return False

    def process_new_lines(self, lines: Sequence[str]) -> None:
        raise NotImplementedError

    def done(self) -> None:
        return None


class LoggingLineReceiver(MultiLineReceiver):
    """Forwards every output line to a logger at DEBUG."""

    def __init__(self, logger: logging.Logger | logging.LoggerAdapter) -> None:
        super().__init__()
        self._logger = logger

    def process_new_lines(self, lines: Sequence[str]) -> None:
        for line in lines:
            self._logger.debug(line)
