from __future__ import annotations

import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Union

from serverwatch.core.durations import secs_to_shortest_duration
from serverwatch.core.telemetry.stopwatch import Stopwatch


class MonitorState(str, Enum):
    PENDING = "PENDING"
    HEALTHY = "HEALTHY"
    DELAYED = "DELAYED"
    FATAL = "FATAL"


@dataclass(frozen=True)
class MonitorStatus:
    state: MonitorState
    secs_since_last: float
    secs_since_first: float


class HealthEventMonitor:
    """
    Turns a stream of "healthy" events into PENDING/HEALTHY/DELAYED/FATAL.

    The state is never stored: every read of `status` recomputes it from the
    seconds since the last healthy event and the two limits.
    """

    def __init__(self, delay_limit: float, fatal_limit: float, *, clock: Callable[[], float] = time.monotonic):
        if delay_limit >= fatal_limit:
            raise ValueError("delay_limit must be lower than fatal_limit")
        self.delay_limit = delay_limit
        self.fatal_limit = fatal_limit
        self._clock = clock
        self._sw_last_healthy = Stopwatch(clock=clock)
        self._first_healthy_at: Optional[float] = None

    def reset(self) -> None:
        self._sw_last_healthy.reset()
        self._first_healthy_at = None

    def mark_healthy(self) -> None:
        self._sw_last_healthy.restart()
        if self._first_healthy_at is None:
            self._first_healthy_at = self._clock()

    @property
    def status(self) -> MonitorStatus:
        sw = self._sw_last_healthy
        if not sw.started:
            state = MonitorState.PENDING
        elif sw.is_over(self.fatal_limit):
            state = MonitorState.FATAL
        elif sw.is_over(self.delay_limit):
            state = MonitorState.DELAYED
        else:
            state = MonitorState.HEALTHY
        if self._first_healthy_at is None:
            secs_since_first = math.inf
        else:
            secs_since_first = max(0, math.floor(self._clock() - self._first_healthy_at))
        return MonitorStatus(state=state, secs_since_last=sw.elapsed, secs_since_first=secs_since_first)


class MonitorIssue:
    """Groups the lines describing one monitor problem: a title, then infos, then details."""

    def __init__(self, title: str):
        self.title = title
        self._infos: List[str] = []
        self._details: List[str] = []

    def set_title(self, title: str) -> None:
        self.title = title

    def add_info(self, info: Optional[str]) -> None:
        if not info:
            return
        self._infos.append(info)

    def add_detail(self, detail: Optional[str]) -> None:
        if not detail:
            return
        self._details.append(detail)

    @property
    def all(self) -> List[str]:
        return [self.title, *self._infos, *self._details]


MonitorIssues = Sequence[Union[str, MonitorIssue, None]]


def clean_monitor_issues(issues: Optional[MonitorIssues]) -> List[str]:
    if not issues or not isinstance(issues, (list, tuple)):
        return []
    out: List[str] = []
    for issue in issues:
        if not issue:
            continue
        if isinstance(issue, str):
            out.append(issue)
        else:
            out.extend(x for x in issue.all if x)
    return out


def get_monitor_time_tags(heartbeat: MonitorStatus, health_check: MonitorStatus, process_uptime: float) -> Dict[str, str]:
    """Short time tags for monitor log lines, e.g. "(P:5m|HB:2s|HC:--)"."""

    def secs(s: float) -> str:
        return secs_to_shortest_duration(s, round_secs=False) if math.isfinite(s) else "--"

    proc_time = secs_to_shortest_duration(process_uptime) if math.isfinite(process_uptime) else "--"
    hb_time = secs(heartbeat.secs_since_last)
    hc_time = secs(health_check.secs_since_last)
    return {
        "simple": f"(HB:{hb_time}|HC:{hc_time})",
        "with_proc": f"(P:{proc_time}|HB:{hb_time}|HC:{hc_time})",
    }
