"""
Game server telemetry.

This subsystem tracks:
- Liveness of the server process (heartbeats + /dynamic.json health checks)
- Tick time histograms sampled from the server's /perf/ counters
- A variable-resolution history of them, persisted to data/statsData.json
"""

from serverwatch.core.telemetry.perf_collector import PerformanceCollector
from serverwatch.core.telemetry.server_monitor import ServerMonitor, ServerStatus

__all__ = ["PerformanceCollector", "ServerMonitor", "ServerStatus"]
