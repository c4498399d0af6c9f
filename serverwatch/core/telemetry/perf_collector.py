from __future__ import annotations

import os
import statistics
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from serverwatch.core.config.io import atomic_write_json, read_json_file
from serverwatch.core.config.models import PerfCollectorConfig
from serverwatch.core.errors import PerfFetchError, StatsFileError
from serverwatch.core.logger import get_logger
from serverwatch.core.telemetry.perf_schemas import (
    DataEvent,
    NodeHeapEvent,
    PerfBoundaries,
    PerfCounts,
    PerfHist,
    PerfSummary,
    StatsFile,
    StatsLog,
    SvBootEvent,
    SvCloseEvent,
)
from serverwatch.core.telemetry.perf_utils import HttpPerfSource, diff_perfs, is_counter_reset, perf_counts_to_hist
from serverwatch.core.telemetry.stats_configs import MEGABYTE, PERF_DATA_THREAD_NAMES, STATS_DATA_FILE_NAME, STATS_DATA_FILE_VERSION
from serverwatch.core.telemetry.stats_optimizer import DEFAULT_RETENTION_POLICY, RetentionPolicy, optimize_stats_log


@dataclass(frozen=True)
class NodeMemory:
    used: float
    total: float


@dataclass(frozen=True)
class RecentStats:
    players: Optional[int] = None
    fxs_memory: Optional[float] = None
    node_memory: Optional[NodeMemory] = None
    perf: Optional[PerfHist] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "players": self.players,
            "fxs_memory": self.fxs_memory,
            "node_memory": {"used": self.node_memory.used, "total": self.node_memory.total} if self.node_memory else None,
            "perf": {k: v.model_dump() for k, v in self.perf.items()} if self.perf else None,
        }


@dataclass(frozen=True)
class _SavedPerf:
    ts: float
    counts: PerfCounts


class PerformanceCollector:
    """
    Collects the game server's performance counters every minute and keeps a
    variable-resolution history of them in <data_dir>/statsData.json.

    Every mutation goes through `_write_lock`; `get_recent_stats()` reads an
    immutable snapshot published after each committed change.
    Collaborators are wired with `attach(runner=..., health_monitor=..., playerlist=...)`.
    """

    def __init__(
        self,
        *,
        cfg: PerfCollectorConfig,
        data_dir: str,
        source: Any = None,
        logger=None,
        clock: Callable[[], float] = time.time,
        retention_policy: RetentionPolicy = DEFAULT_RETENTION_POLICY,
    ):
        self.cfg = cfg
        self.stats_data_path = os.path.join(data_dir, STATS_DATA_FILE_NAME)
        self.source = source or HttpPerfSource(timeout_seconds=cfg.request_timeout_seconds)
        self.logger = logger or get_logger("perf")
        self._clock = clock
        self._policy = retention_policy

        self._write_lock = threading.RLock()
        self._deps: Dict[str, Any] = {}
        self.stats_log: StatsLog = []
        self._last_players: Optional[int] = None
        self._last_fxs_memory: Optional[float] = None
        self._last_node_memory: Optional[NodeMemory] = None
        self._last_perf_boundaries: Optional[PerfBoundaries] = None
        self._last_perf_counts: Optional[PerfCounts] = None
        self._last_perf_saved: Optional[_SavedPerf] = None
        self._recent = RecentStats()

        self._stop = threading.Event()
        self._exec = ThreadPoolExecutor(max_workers=2, thread_name_prefix="perf-fetch")
        self._thread = threading.Thread(target=self._loop, name="perf-collector", daemon=True)

        self.load_stats_history()
        if self.cfg.enabled:
            self._thread.start()

    # -------- wiring --------
    def attach(self, **deps: Any) -> None:
        """
        Expected keys: runner (is_running, server_host, pid),
        health_monitor (current_status), playerlist (online_count).
        """
        with self._write_lock:
            self._deps.update(deps)

    def stop(self) -> None:
        self._stop.set()
        if self._thread.is_alive():
            self._thread.join(timeout=2.0)
        self._exec.shutdown(wait=False, cancel_futures=True)

    # -------- state resets --------
    def reset_perf_state(self) -> None:
        """Forget the last counters (boundaries are kept)."""
        with self._write_lock:
            self._clear_perf_counters()
            self._publish_recent()

    def reset_memory_state(self) -> None:
        with self._write_lock:
            self._last_node_memory = None
            self._last_fxs_memory = None
            self._publish_recent()

    # -------- server events --------
    def log_server_boot(self, boot_time: float) -> None:
        """Registers that the server BOOTED (health monitor reached ONLINE)."""
        try:
            with self._write_lock:
                self.reset_perf_state()
                self.reset_memory_state()
                # a dangling boot means the server didn't really start, otherwise it would have logged stats
                if self.stats_log and isinstance(self.stats_log[-1], SvBootEvent):
                    self.stats_log.pop()
                self.stats_log.append(SvBootEvent(ts=self._clock(), boot_time=boot_time))
                self.save_stats_history()
        except Exception as e:  # noqa: BLE001
            self.logger.warning(f"Failed to log server boot: {e}")

    def log_server_close(self, reason: str) -> None:
        """Registers that the server CLOSED (process killed or exited)."""
        try:
            with self._write_lock:
                self.reset_perf_state()
                self.reset_memory_state()
                last = self.stats_log[-1] if self.stats_log else None
                if isinstance(last, SvCloseEvent):
                    return
                # boot without any data: the server never really ran
                if isinstance(last, SvBootEvent):
                    self.stats_log.pop()
                else:
                    self.stats_log.append(SvCloseEvent(ts=self._clock(), reason=str(reason)))
                self.save_stats_history()
        except Exception as e:  # noqa: BLE001
            self.logger.warning(f"Failed to log server close: {e}")

    def log_server_node_memory(self, payload: Any) -> None:
        """Stores the host runtime's last memory usage, used in the next data snapshot."""
        try:
            ev = NodeHeapEvent.model_validate(payload)
        except ValidationError as e:
            self.logger.warning(f"Invalid node memory payload: {e.error_count()} error(s)")
            self.logger.debug(str(e))
            return
        with self._write_lock:
            self._last_node_memory = NodeMemory(
                used=round(ev.heap_used / MEGABYTE, 2),
                total=round(ev.heap_total / MEGABYTE, 2),
            )
            self._publish_recent()

    # -------- reads --------
    def get_recent_stats(self) -> RecentStats:
        return self._recent

    def get_server_perf_summary(self) -> Optional[PerfSummary]:
        """
        Combined svMain tick distribution of the last hours, weighted by each
        snapshot's tick count. None when there is not enough data yet.
        NOTE: walks the whole log.
        """
        log = list(self.stats_log)
        window_start = self._clock() - float(self.cfg.summary_window_seconds)

        cum_buckets: List[float] = []
        cum_ticks = 0.0
        snaps = 0
        players: List[Optional[float]] = []
        fxs_memory: List[Optional[float]] = []
        node_memory: List[Optional[float]] = []
        for ev in log:
            if ev.ts < window_start or not isinstance(ev, DataEvent):
                continue
            main = ev.perf["svMain"]
            if main.count < self.cfg.min_ticks:
                continue
            if not cum_buckets:
                cum_buckets = [0.0] * len(main.freqs)
            elif len(main.freqs) != len(cum_buckets):
                continue
            snaps += 1
            players.append(ev.players)
            fxs_memory.append(ev.fxs_memory)
            node_memory.append(ev.node_memory)
            for i, freq in enumerate(main.freqs):
                ticks = freq * main.count
                cum_ticks += ticks
                cum_buckets[i] += ticks

        if snaps < self.cfg.summary_min_snapshots:
            return None

        return PerfSummary(
            snaps=snaps,
            freqs=[b / cum_ticks if cum_ticks else 0.0 for b in cum_buckets],
            players=_median(players),
            fxs_memory=_median(fxs_memory),
            node_memory=_median(node_memory),
        )

    # -------- collection --------
    def collect_stats(self) -> Optional[DataEvent]:
        """
        One collection cycle. Returns the snapshot added to the log, if any.
        Raises when the counters could not be fetched; cached state is left untouched then.
        """
        with self._write_lock:
            deps = dict(self._deps)
        runner = deps.get("runner")
        health_monitor = deps.get("health_monitor")
        playerlist = deps.get("playerlist")
        if runner is None or not getattr(runner, "is_running", False):
            return None
        if playerlist is None:
            return None
        if health_monitor is None or _status_name(getattr(health_monitor, "current_status", None)) != "ONLINE":
            return None

        host = self.cfg.server_host or getattr(runner, "server_host", None)
        if not isinstance(host, str) or not host:
            raise PerfFetchError(f"Invalid server host: {host!r}")

        with self._write_lock:
            perf_fut = self._exec.submit(self.source.fetch_raw_perf_data, host)
            mem_fut = self._exec.submit(self.source.fetch_fxs_memory, getattr(runner, "pid", None))
            fxs_memory_ok = False
            fxs_memory: Optional[float] = None
            try:
                fxs_memory = mem_fut.result()
                fxs_memory_ok = True
            except Exception as e:  # noqa: BLE001
                self.logger.debug(f"Failed to fetch server memory, keeping last value: {e}")
            raw = perf_fut.result()
            metrics = raw.perf_metrics

            if any(metrics[t].count < self.cfg.min_ticks for t in PERF_DATA_THREAD_NAMES):
                self.logger.debug("Not enough ticks to log. Skipping this collection.")
                return None
            if fxs_memory_ok:
                self._last_fxs_memory = fxs_memory

            # first collection or boundaries changed
            if self._last_perf_boundaries is None:
                self.logger.debug("First perf collection.")
                self._last_perf_boundaries = list(raw.perf_boundaries)
                self._clear_perf_counters()
            elif list(raw.perf_boundaries) != list(self._last_perf_boundaries):
                self.logger.warning("Performance boundaries changed. Resetting history.")
                self.stats_log = []
                self._last_perf_boundaries = list(raw.perf_boundaries)
                self._clear_perf_counters()

            # counter (somehow) reset
            if self._last_perf_counts is not None and is_counter_reset(metrics, self._last_perf_counts):
                self.logger.warning("Performance counter reset. Resetting last counts and last saved.")
                self._clear_perf_counters()
            elif self._last_perf_saved is not None and is_counter_reset(metrics, self._last_perf_saved.counts):
                self.logger.warning("Performance counter reset. Resetting last saved.")
                self._last_perf_saved = None

            # tick counts since the last collection (1 interval ago)
            latest_hist = perf_counts_to_hist(diff_perfs(metrics, self._last_perf_counts))
            self._last_perf_counts = metrics
            self._last_players = int(getattr(playerlist, "online_count", 0) or 0)
            self._publish_recent()

            now = self._clock()
            if self._last_perf_saved is None:
                hist_to_save = latest_hist
            elif now - self._last_perf_saved.ts >= float(self.cfg.min_save_interval_seconds):
                hist_to_save = perf_counts_to_hist(diff_perfs(metrics, self._last_perf_saved.counts))
            else:
                self.logger.debug("Not enough time passed since last saved collection. Skipping save.")
                return None

            self._last_perf_saved = _SavedPerf(ts=now, counts=metrics)
            snapshot = DataEvent(
                ts=now,
                players=self._last_players,
                fxs_memory=self._last_fxs_memory,
                node_memory=self._last_node_memory.used if self._last_node_memory else None,
                perf=hist_to_save,
            )
            self.stats_log.append(snapshot)
            self.logger.debug(f"Collected performance snapshot #{len(self.stats_log)}")
            self.save_stats_history()
            return snapshot

    # -------- persistence --------
    def load_stats_history(self) -> bool:
        with self._write_lock:
            try:
                return self._load_stats_file()
            except Exception as e:  # noqa: BLE001
                self.logger.warning(f"Failed to load {STATS_DATA_FILE_NAME} with message: {e}")
                self.logger.warning("Since this is not a critical file, it will be reset.")
                self._reset_history()
                return False

    def _load_stats_file(self) -> bool:
        rr = read_json_file(self.stats_data_path)
        if not rr.ok:
            if rr.missing:
                self.logger.debug(f"No {STATS_DATA_FILE_NAME} yet; starting a new history.")
            else:
                self.logger.warning(f"Failed to load {STATS_DATA_FILE_NAME} with message: {rr.error}")
                self.logger.warning("Since this is not a critical file, it will be reset.")
            self._reset_history()
            return False
        try:
            stats = _parse_stats_file(rr.data)
        except StatsFileError as e:
            self.logger.warning(f"Failed to load {STATS_DATA_FILE_NAME}: {e.user_message}")
            self.logger.warning("Since this is not a critical file, it will be reset.")
            self._reset_history()
            return False
        self._last_perf_boundaries = stats.last_perf_boundaries
        self.stats_log = optimize_stats_log(stats.log, now=self._clock(), min_ticks=self.cfg.min_ticks, policy=self._policy)
        self.reset_perf_state()
        self.logger.debug(f"Loaded {len(self.stats_log)} performance snapshots from cache")
        return True

    def save_stats_history(self) -> bool:
        with self._write_lock:
            try:
                self.stats_log = optimize_stats_log(self.stats_log, now=self._clock(), min_ticks=self.cfg.min_ticks, policy=self._policy)
                doc = StatsFile(
                    version=STATS_DATA_FILE_VERSION,
                    last_perf_boundaries=self._last_perf_boundaries,
                    log=self.stats_log,
                )
                atomic_write_json(self.stats_data_path, doc.model_dump(mode="json", by_alias=True), pretty=False)
                return True
            except Exception as e:  # noqa: BLE001
                self.logger.warning(f"Failed to save {STATS_DATA_FILE_NAME} with message: {e}")
                return False

    # -------- internal --------
    def _clear_perf_counters(self) -> None:
        # caller holds _write_lock and publishes
        self._last_perf_counts = None
        self._last_perf_saved = None

    def _reset_history(self) -> None:
        self.stats_log = []
        self._last_perf_boundaries = None
        self.reset_perf_state()

    def _publish_recent(self) -> None:
        self._recent = RecentStats(
            players=self._last_players,
            fxs_memory=self._last_fxs_memory,
            node_memory=self._last_node_memory,
            perf=perf_counts_to_hist(self._last_perf_counts) if self._last_perf_counts else None,
        )

    def _loop(self) -> None:
        interval = max(0.2, float(self.cfg.collect_interval_seconds))
        while not self._stop.wait(interval):
            try:
                self.collect_stats()
            except Exception as e:  # noqa: BLE001
                self.logger.warning(f"Error while collecting server stats: {e}")


def _parse_stats_file(data: Dict[str, Any]) -> StatsFile:
    version = data.get("version")
    if type(version) is not int or version != STATS_DATA_FILE_VERSION:
        raise StatsFileError(f"unsupported version {version!r}.", version=version)
    try:
        return StatsFile.model_validate(data)
    except ValidationError as e:
        raise StatsFileError(f"invalid data ({e.error_count()} error(s)).") from e


def _status_name(status: Any) -> str:
    return str(getattr(status, "value", status))


def _median(values: List[Optional[float]]) -> Optional[float]:
    xs = [float(v) for v in values if v is not None]
    if not xs:
        return None
    return float(statistics.median(xs))
