"""instr-harness.

Runs Android instrumentation tests on one or more adb-connected devices:
- a serialized per-device command channel (`runtime.android.device`)
- coverage file retrieval (`runtime.coverage`)
- the package/class/method test plan (`planner`)
- per-device orchestration (`commands`) and multi-device scheduling
"""

__all__ = [
    "cli",
    "commands",
    "config",
    "logs",
    "planner",
    "reporting",
    "runtime",
]
