"""Per-device commands (instrumentation test execution)."""
