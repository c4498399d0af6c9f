from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from serverwatch.core.telemetry.perf_schemas import DataEvent, StatsLog, SvBootEvent, SvCloseEvent
from serverwatch.core.telemetry.stats_configs import PERF_DATA_MIN_TICKS


@dataclass(frozen=True)
class RetentionBand:
    max_age_seconds: float
    min_spacing_seconds: float


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Age bands, youngest first. Data events are thinned to the band spacing;
    boot/close markers inside the last band are always kept.
    Past the last band's max_age_seconds everything goes, markers included.
    """

    bands: Tuple[RetentionBand, ...] = field(
        default_factory=lambda: (
            RetentionBand(max_age_seconds=6 * 3600, min_spacing_seconds=0),
            RetentionBand(max_age_seconds=24 * 3600, min_spacing_seconds=15 * 60),
            RetentionBand(max_age_seconds=14 * 86400, min_spacing_seconds=60 * 60),
        )
    )

    @property
    def max_age_seconds(self) -> float:
        return self.bands[-1].max_age_seconds

    def spacing_for(self, age_seconds: float) -> float:
        for band in self.bands:
            if age_seconds < band.max_age_seconds:
                return band.min_spacing_seconds
        return self.bands[-1].min_spacing_seconds


DEFAULT_RETENTION_POLICY = RetentionPolicy()


def optimize_stats_log(
    log: Sequence,
    *,
    now: Optional[float] = None,
    min_ticks: int = PERF_DATA_MIN_TICKS,
    policy: RetentionPolicy = DEFAULT_RETENTION_POLICY,
) -> StatsLog:
    """
    Returns a bounded copy of the stats log: recent data at full resolution,
    older data progressively thinned, nothing older than the policy's max age.

    Running it on its own output returns the same list.
    """
    if now is None:
        now = time.time()
    cutoff = now - policy.max_age_seconds
    kept = [
        ev
        for ev in log
        if ev.ts >= cutoff and not (isinstance(ev, DataEvent) and ev.perf["svMain"].count < min_ticks)
    ]
    return _thin_data(_normalize_markers(kept), now=now, policy=policy)


def _normalize_markers(log: Sequence) -> StatsLog:
    """
    Same rules the collector applies when logging boots/closes:
    a boot replaces a dangling boot, a repeated close is dropped,
    and a boot directly followed by a close leaves nothing.
    """
    out: List = []
    for ev in log:
        last = out[-1] if out else None
        if isinstance(ev, SvBootEvent) and isinstance(last, SvBootEvent):
            out[-1] = ev
        elif isinstance(ev, SvCloseEvent) and isinstance(last, SvCloseEvent):
            continue
        elif isinstance(ev, SvCloseEvent) and isinstance(last, SvBootEvent):
            out.pop()
        else:
            out.append(ev)
    return out


def _thin_data(log: Sequence, *, now: float, policy: RetentionPolicy) -> StatsLog:
    # The first data event of every session is kept, so thinning never leaves a boot next to a close.
    out: List = []
    last_kept_ts: Optional[float] = None
    for ev in log:
        if not isinstance(ev, DataEvent):
            last_kept_ts = None
            out.append(ev)
            continue
        spacing = policy.spacing_for(now - ev.ts)
        if last_kept_ts is None or ev.ts - last_kept_ts >= spacing:
            out.append(ev)
            last_kept_ts = ev.ts
    return out
