"""Compression levels and the usage-ratio breakpoints that select them"""

import math
from enum import IntEnum


class CompressionLevel(IntEnum):
    FULL = 0
    TRUNCATE = 1
    SLIDING_WINDOW = 2
    DEEP_COMPRESSION = 3
    HANDOFF = 4


LEVEL_NAMES = {
    CompressionLevel.FULL: "Full Context",
    CompressionLevel.TRUNCATE: "Smart Truncation",
    CompressionLevel.SLIDING_WINDOW: "Sliding Window",
    CompressionLevel.DEEP_COMPRESSION: "Deep Compression",
    CompressionLevel.HANDOFF: "Session Handoff",
}

# (lower bound, level), highest first
_BREAKPOINTS = [
    (0.95, CompressionLevel.HANDOFF),
    (0.85, CompressionLevel.DEEP_COMPRESSION),
    (0.7, CompressionLevel.SLIDING_WINDOW),
    (0.5, CompressionLevel.TRUNCATE),
]


def level_for_ratio(ratio: float) -> CompressionLevel:
    """Map a context usage ratio to a compression level"""
    if ratio is None or math.isnan(ratio):
        ratio = 0.0
    ratio = max(0.0, ratio)
    for bound, level in _BREAKPOINTS:
        if ratio >= bound:
            return level
    return CompressionLevel.FULL


def name_of(level: int) -> str:
    return LEVEL_NAMES[CompressionLevel(level)]
