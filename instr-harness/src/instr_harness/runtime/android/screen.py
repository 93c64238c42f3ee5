from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import ClassVar, Optional, Tuple

# Density that maps 1px to 1dp.
BASELINE_DENSITY = 160


class ScreenSizeParseError(ValueError):
    pass


@dataclass(frozen=True)
class ScreenMetrics:
    width: Optional[int]
    height: Optional[int]
    density: Optional[int]

    UNKNOWN: ClassVar["ScreenMetrics"]

    @property
    def known(self) -> bool:
        return self.width is not None and self.height is not None

    def width_in_dp(self) -> Optional[int]:
        return px_to_dp(self.width, self.density)

    def height_in_dp(self) -> Optional[int]:
        return px_to_dp(self.height, self.density)


ScreenMetrics.UNKNOWN = ScreenMetrics(width=None, height=None, density=None)


def px_to_dp(px: Optional[int], density: Optional[int]) -> Optional[int]:
    if px is None or not density:
        return None
    # Halves round up.
    return math.floor(px / (density / BASELINE_DENSITY) + 0.5)


_SIZE_PATTERNS = (
    # Pre-Q: "init=1080x1920 420dpi cur=1080x1920 app=1080x1794"
    r"\binit=(\d+)x(\d+)",
    r"\bcur=(\d+)x(\d+)",
    r"mUnrestrictedScreen=\(\d+,\d+\)\s*(\d+)x(\d+)",
    # Android 10+: "DisplayFrames w=1080 h=2400 r=0"
    r"DisplayFrames\s+w=(\d+)\s+h=(\d+)",
)


def parse_screen_size(txt: str) -> Tuple[int, int]:
    """Return (width, height) in px from `dumpsys window` output."""

    for pat in _SIZE_PATTERNS:
        m = re.search(pat, txt)
        if m:
            width, height = int(m.group(1)), int(m.group(2))
            if width > 0 and height > 0:
                return width, height
    raise ScreenSizeParseError(f"screen size not found in dumpsys output: {txt.strip()[:200]!r}")


_DENSITY_PATTERNS = (
    r"\binit=\d+x\d+\s+(\d+)dpi",
    r"Override density:\s*(\d+)",
    r"Physical density:\s*(\d+)",
)


def _first_positive(patterns: Tuple[str, ...], txt: str) -> Optional[int]:
    for pat in patterns:
        m = re.search(pat, txt)
        if m and int(m.group(1)) > 0:
            return int(m.group(1))
    return None


def parse_density(txt: str) -> Optional[int]:
    """Density from `dumpsys window` (`init=... 420dpi`) or `wm density` output."""
    return _first_positive(_DENSITY_PATTERNS, txt)


def parse_density_property(value: str) -> Optional[int]:
    """Density from the `ro.sf.lcd_density` property: the whole value is the number."""
    return _first_positive((r"\A\s*(\d+)\s*\Z",), value)
