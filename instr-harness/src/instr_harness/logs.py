from __future__ import annotations

import logging
from typing import Any, MutableMapping, Optional

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logging.basicConfig(level=level, format=_LOG_FORMAT)


class DeviceLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every record with the device it concerns."""

    def __init__(self, logger: logging.Logger, device_name: Optional[str]) -> None:
        super().__init__(logger, {"device": device_name or "?"})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['device']}] {msg}", kwargs
