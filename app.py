from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
import time
from dataclasses import dataclass
from typing import Optional

import psutil

from serverwatch.core.config import ConfigManager, ProfilePaths
from serverwatch.core.errors import WatchError
from serverwatch.core.logger import setup_logging
from serverwatch.core.telemetry import PerformanceCollector, ServerMonitor, ServerStatus


@dataclass
class ExternalServer:
    """A game server process started by someone else; we only watch it."""

    server_host: str
    pid: Optional[int] = None

    @property
    def is_running(self) -> bool:
        if self.pid is None:
            return True
        return psutil.pid_exists(self.pid)


class BootTracker:
    """Turns monitor status changes into boot/close events for the collector."""

    def __init__(self, *, monitor: ServerMonitor, collector: PerformanceCollector, server: ExternalServer, logger: logging.Logger):
        self.monitor = monitor
        self.collector = collector
        self.server = server
        self.logger = logger
        self._was_online = False
        self._boot_started = time.time()

    def tick(self) -> None:
        status = self.monitor.current_status
        if status == ServerStatus.ONLINE and not self._was_online:
            boot_time = round(time.time() - self._boot_started, 1)
            self.logger.info(f"Server is ONLINE (boot took {boot_time}s).")
            self.collector.log_server_boot(boot_time)
            self._was_online = True
        elif status == ServerStatus.OFFLINE and self._was_online:
            reason = "process exited" if not self.server.is_running else "health check failed"
            self.logger.warning(f"Server went OFFLINE: {reason}.")
            self.collector.log_server_close(reason)
            self.monitor.reset()
            self._boot_started = time.time()
            self._was_online = False


def main() -> None:
    ap = argparse.ArgumentParser(description="serverwatch: game server health and performance monitor")
    ap.add_argument("--profile", default=".", help="Profile directory (config/, data/, logs/).")
    ap.add_argument("--host", default="127.0.0.1:30120", help="Game server HTTP endpoint (host:port).")
    ap.add_argument("--pid", type=int, default=None, help="Game server process id (enables memory stats).")
    ap.add_argument("--once", action="store_true", help="Run one health check and one collection, then exit.")
    ap.add_argument("--summary", action="store_true", help="Print the stored performance summary and exit.")
    args = ap.parse_args()

    paths = ProfilePaths(args.profile)
    logger = setup_logging(paths.logs_dir)

    try:
        cfg = ConfigManager(fs=paths, logger=logger).load_all()
    except WatchError as e:
        logger.error(f"Failed to load config: {e}")
        sys.exit(2)

    if args.summary:
        perf_cfg = cfg.telemetry.model_copy(update={"enabled": False})
        collector = PerformanceCollector(cfg=perf_cfg, data_dir=paths.data_dir, logger=logger)
        summary = collector.get_server_perf_summary()
        print(json.dumps(summary.model_dump() if summary else None, indent=2))
        collector.stop()
        return

    server = ExternalServer(server_host=args.host, pid=args.pid)
    monitor = ServerMonitor(cfg=cfg.monitor, logger=logger)
    monitor.reset()
    perf_cfg = cfg.telemetry.model_copy(update={"enabled": cfg.telemetry.enabled and not args.once})
    collector = PerformanceCollector(cfg=perf_cfg, data_dir=paths.data_dir, logger=logger)
    collector.attach(runner=server, health_monitor=monitor, playerlist=monitor)
    tracker = BootTracker(monitor=monitor, collector=collector, server=server, logger=logger)

    if args.once:
        monitor.run_health_check(server.server_host)
        tracker.tick()
        try:
            collector.collect_stats()
        except WatchError as e:
            logger.warning(f"Failed to collect stats: {e}")
        print(json.dumps({"monitor": monitor.get_status(), "recent": collector.get_recent_stats().to_dict()}, indent=2))
        collector.stop()
        return

    stop = threading.Event()
    logger.info(f"Watching {server.server_host}. Press Ctrl+C to stop.")
    try:
        while not stop.wait(float(cfg.monitor.health_check_interval_seconds)):
            monitor.run_health_check(server.server_host)
            tracker.tick()
    except KeyboardInterrupt:
        print()
    finally:
        collector.stop()
        logger.info("Stopped.")


if __name__ == "__main__":
    main()
