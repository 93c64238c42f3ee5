"""Device-side runtime: the adb transport, the per-device channel and coverage retrieval."""
