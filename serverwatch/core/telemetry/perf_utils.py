from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional

import psutil
import requests

from serverwatch.core.errors import PerfFetchError, PerfParseError
from serverwatch.core.telemetry.perf_schemas import PerfBoundaries, PerfCounts, PerfHist, ThreadPerfCounts, ThreadPerfHist
from serverwatch.core.telemetry.stats_configs import MEGABYTE, PERF_DATA_THREAD_NAMES

_METRIC_LINE = re.compile(r"^tickTime_(count|sum|bucket)\{([^}]*)\}\s+(\S+)\s*$")
_LABEL = re.compile(r'(\w+)="([^"]*)"')


@dataclass(frozen=True)
class RawPerfData:
    perf_boundaries: PerfBoundaries
    perf_metrics: PerfCounts


def diff_perfs(curr: PerfCounts, prev: Optional[PerfCounts] = None) -> PerfCounts:
    """
    Tick counts between two snapshots of the same counters.
    Without a previous snapshot, the current (since boot) counts are returned as is.
    """
    if prev is None:
        return curr
    out: PerfCounts = {}
    for thread, c in curr.items():
        p = prev[thread]
        out[thread] = ThreadPerfCounts(
            count=c.count - p.count,
            buckets=[cb - pb for cb, pb in zip(c.buckets, p.buckets)],
        )
    return out


def perf_counts_to_hist(counts: PerfCounts) -> PerfHist:
    """Bucket counts -> frequencies (fractions of the thread's tick count, all 0 without ticks)."""
    out: PerfHist = {}
    for thread, c in counts.items():
        freqs = [b / c.count if c.count else 0.0 for b in c.buckets]
        out[thread] = ThreadPerfHist(count=c.count, freqs=freqs)
    return out


def is_counter_reset(curr: PerfCounts, prev: PerfCounts) -> bool:
    """True when any counter went backwards (server restarted or counter wrapped)."""
    for thread, c in curr.items():
        p = prev.get(thread)
        if p is None:
            continue
        if c.count < p.count:
            return True
        if any(cb < pb for cb, pb in zip(c.buckets, p.buckets)):
            return True
    return False


def parse_raw_perf(raw: str) -> RawPerfData:
    """
    Parses the tickTime histogram out of the server's Prometheus text exposition.

    Buckets are reported cumulatively (le="..."); they are converted to
    per-bucket counts. Boundaries must be the same for every tracked thread.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise PerfParseError("Empty perf data.")

    counts: Dict[str, int] = {}
    cum_buckets: Dict[str, List[int]] = {t: [] for t in PERF_DATA_THREAD_NAMES}
    boundaries: Dict[str, PerfBoundaries] = {t: [] for t in PERF_DATA_THREAD_NAMES}
    for line in raw.splitlines():
        m = _METRIC_LINE.match(line.strip())
        if not m:
            continue
        kind, labels_raw, value_raw = m.groups()
        labels = dict(_LABEL.findall(labels_raw))
        thread = labels.get("name")
        if thread not in cum_buckets:
            continue
        try:
            value = int(float(value_raw))
        except (ValueError, OverflowError) as e:
            raise PerfParseError(f"Invalid value for {thread}: {value_raw}") from e
        if kind == "count":
            counts[thread] = value
        elif kind == "bucket":
            le = labels.get("le")
            if le is None:
                raise PerfParseError(f"Bucket without boundary for {thread}.")
            try:
                boundaries[thread].append("+Inf" if le == "+Inf" else float(le))
            except ValueError as e:
                raise PerfParseError(f"Invalid boundary for {thread}: {le}") from e
            cum_buckets[thread].append(value)

    ref = boundaries[PERF_DATA_THREAD_NAMES[0]]
    if not ref or ref[-1] != "+Inf":
        raise PerfParseError("Missing or incomplete tickTime boundaries.")
    finite = ref[:-1]
    if any(b == "+Inf" for b in finite) or finite != sorted(finite):
        raise PerfParseError("Boundaries are not in ascending order.")

    metrics: PerfCounts = {}
    for thread in PERF_DATA_THREAD_NAMES:
        if thread not in counts:
            raise PerfParseError(f"Missing tick count for {thread}.")
        if boundaries[thread] != ref:
            raise PerfParseError(f"Boundaries of {thread} do not match {PERF_DATA_THREAD_NAMES[0]}.")
        cum = cum_buckets[thread]
        buckets = [v - (cum[i - 1] if i else 0) for i, v in enumerate(cum)]
        if any(b < 0 for b in buckets):
            raise PerfParseError(f"Cumulative buckets of {thread} are decreasing.")
        if cum[-1] > counts[thread]:
            raise PerfParseError(f"Bucket total of {thread} exceeds its tick count.")
        metrics[thread] = ThreadPerfCounts(count=counts[thread], buckets=buckets)

    return RawPerfData(perf_boundaries=list(ref), perf_metrics=metrics)


class HttpPerfSource:
    """Fetches counters from the server's HTTP endpoint and its memory usage from the OS."""

    def __init__(self, *, timeout_seconds: float = 1.5):
        self.timeout_seconds = float(timeout_seconds)

    def fetch_raw_perf_data(self, host: str) -> RawPerfData:
        url = f"http://{host}/perf/"
        try:
            r = requests.get(url, timeout=self.timeout_seconds, allow_redirects=False)
        except requests.RequestException as e:
            raise PerfFetchError(f"Perf request error: {e}", url=url) from e
        if r.status_code != 200:
            raise PerfFetchError(f"Perf HTTP status: {r.status_code}", url=url)
        return parse_raw_perf(r.text)

    def fetch_fxs_memory(self, pid: Optional[int]) -> Optional[float]:
        """Resident memory of the server process, in MB."""
        if not pid:
            return None
        rss = psutil.Process(int(pid)).memory_info().rss
        return round(rss / MEGABYTE, 2)
