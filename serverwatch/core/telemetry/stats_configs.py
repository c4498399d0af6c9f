from __future__ import annotations

# Threads tracked from the game server's tickTime histogram.
PERF_DATA_THREAD_NAMES = ("svMain", "svNetwork", "svSync")

# Less ticks than that and a snapshot is not statistically meaningful.
PERF_DATA_MIN_TICKS = 600

STATS_DATA_FILE_VERSION = 1
STATS_DATA_FILE_NAME = "statsData.json"

MEGABYTE = 1024 * 1024
