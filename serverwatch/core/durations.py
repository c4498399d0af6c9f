from __future__ import annotations

import math

_UNITS = (("d", 86400), ("h", 3600), ("m", 60))


def secs_to_shortest_duration(secs: float, *, round_secs: bool = True) -> str:
    """
    Compact duration string, largest units first, zero units omitted.

    secs_to_shortest_duration(3725) -> "1h2m5s"
    secs_to_shortest_duration(90.4, round_secs=False) -> "1m30.4s"
    """
    if not math.isfinite(secs):
        raise ValueError("duration must be finite")
    remaining = abs(float(secs))
    remaining = float(round(remaining)) if round_secs else round(remaining, 1)
    parts = []
    for suffix, size in _UNITS:
        n = int(remaining // size)
        if n:
            parts.append(f"{n}{suffix}")
            remaining -= n * size
    if remaining or not parts:
        s = f"{remaining:.1f}".rstrip("0").rstrip(".") if not round_secs else str(int(remaining))
        parts.append(f"{s}s")
    out = "".join(parts)
    return f"-{out}" if secs < 0 else out
