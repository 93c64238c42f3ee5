"""Run one command per device, devices in parallel.

Each device gets its own worker thread; nothing is shared between workers
except what the command object itself holds. Per-device ordering is handled
by the device channel lock, not here.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Sequence

from instr_harness.runtime.android.device import ConnectedDevice

logger = logging.getLogger(__name__)


class DeviceCommand(Protocol):
    def execute(self, target_device: ConnectedDevice) -> Any: ...


@dataclass
class DeviceRunSummary:
    results: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, BaseException] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        if self.errors:
            return True
        return any(bool(getattr(r, "failed", False)) for r in self.results.values())


def _device_key(device: ConnectedDevice, index: int) -> str:
    return device.serial_number or device.name or f"device-{index}"


def run_on_devices(
    devices: Sequence[ConnectedDevice],
    command: DeviceCommand,
    *,
    max_workers: Optional[int] = None,
) -> DeviceRunSummary:
    summary = DeviceRunSummary()
    if not devices:
        return summary

    keys: list[str] = []
    for i, d in enumerate(devices):
        key = _device_key(d, i)
        keys.append(key if key not in keys else f"{key}-{i}")
    with ThreadPoolExecutor(
        max_workers=max_workers or len(devices), thread_name_prefix="device"
    ) as pool:
        futures = {key: pool.submit(command.execute, d) for key, d in zip(keys, devices)}
        for key, fut in futures.items():
            try:
                summary.results[key] = fut.result()
            except Exception as e:
                logger.error("device %s run failed: %s", key, e)
                summary.errors[key] = e
    return summary
