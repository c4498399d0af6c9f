from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from serverwatch.core.config.models import MonitorConfig
from serverwatch.core.logger import get_logger
from serverwatch.core.telemetry.health_monitor import (
    HealthEventMonitor,
    MonitorIssue,
    MonitorState,
    clean_monitor_issues,
    get_monitor_time_tags,
)
from serverwatch.core.telemetry.probes import ProbeResult, fetch_dynamic_json
from serverwatch.core.telemetry.stopwatch import Stopwatch


class ServerStatus(str, Enum):
    ONLINE = "ONLINE"
    PARTIAL = "PARTIAL"
    OFFLINE = "OFFLINE"


class ServerMonitor:
    """
    Keeps the two liveness monitors of the game server (heartbeats pushed by
    the server, health checks pulled from /dynamic.json) and derives its status.
    """

    def __init__(
        self,
        *,
        cfg: MonitorConfig,
        probe: Callable[[str, float], ProbeResult] = fetch_dynamic_json,
        logger=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cfg = cfg
        self.probe = probe
        self.logger = logger or get_logger("monitor")
        self._clock = clock
        self._lock = threading.Lock()
        self.heartbeat = HealthEventMonitor(cfg.heartbeat_delay_seconds, cfg.heartbeat_fatal_seconds, clock=clock)
        self.health_check = HealthEventMonitor(cfg.health_check_delay_seconds, cfg.health_check_fatal_seconds, clock=clock)
        self._sw_process = Stopwatch(clock=clock)
        self._online_count = 0
        self._max_clients: Optional[int] = None
        self._last_issue: Optional[MonitorIssue] = None

    def reset(self) -> None:
        """Call when the server process is (re)started."""
        with self._lock:
            self.heartbeat.reset()
            self.health_check.reset()
            self._sw_process.restart()
            self._online_count = 0
            self._max_clients = None
            self._last_issue = None

    def on_heartbeat(self) -> None:
        with self._lock:
            self.heartbeat.mark_healthy()

    def run_health_check(self, endpoint: str) -> bool:
        result = self.probe(endpoint, float(self.cfg.health_check_timeout_seconds))
        with self._lock:
            if result.success and result.data is not None:
                self.health_check.mark_healthy()
                self._online_count = result.data.clients
                self._max_clients = result.data.sv_maxclients
                self._last_issue = None
                return True

            issue = MonitorIssue("Health check failed.")
            issue.add_info(result.error)
            for k, v in (result.debug_data or {}).items():
                issue.add_detail(f"{k}: {v}")
            self._last_issue = issue
        tags = get_monitor_time_tags(self.heartbeat.status, self.health_check.status, self._sw_process.elapsed)
        self.logger.debug(f"{tags['with_proc']} {result.error}")
        return False

    @property
    def current_status(self) -> ServerStatus:
        states = (self.heartbeat.status.state, self.health_check.status.state)
        if MonitorState.HEALTHY in states and not any(s in (MonitorState.DELAYED, MonitorState.FATAL) for s in states):
            return ServerStatus.ONLINE
        if MonitorState.HEALTHY in states or MonitorState.DELAYED in states:
            return ServerStatus.PARTIAL
        return ServerStatus.OFFLINE

    @property
    def online_count(self) -> int:
        return self._online_count

    def get_status(self) -> Dict[str, Any]:
        hb = self.heartbeat.status
        hc = self.health_check.status
        issues: List[str] = clean_monitor_issues([self._last_issue])
        return {
            "status": self.current_status.value,
            "heartbeat": {"state": hb.state.value, "secs_since_last": hb.secs_since_last},
            "health_check": {"state": hc.state.value, "secs_since_last": hc.secs_since_last},
            "online_count": self._online_count,
            "max_clients": self._max_clients,
            "time_tags": get_monitor_time_tags(hb, hc, self._sw_process.elapsed)["simple"],
            "issues": issues,
        }
