from __future__ import annotations

import argparse
import json
import logging

from serverwatch.core.config import ConfigManager, ProfilePaths
from serverwatch.core.telemetry import PerformanceCollector


def main() -> None:
    ap = argparse.ArgumentParser(description="Print the performance summary stored in a profile.")
    ap.add_argument("--profile", default=".", help="Profile directory.")
    args = ap.parse_args()
    paths = ProfilePaths(args.profile)
    cfg = ConfigManager(fs=paths, logger=None, read_only=True).load_all()
    collector = PerformanceCollector(
        cfg=cfg.telemetry.model_copy(update={"enabled": False}),
        data_dir=paths.data_dir,
        logger=logging.getLogger("serverwatch.scripts"),
    )
    try:
        summary = collector.get_server_perf_summary()
        if summary is None:
            print(f"insufficient data ({len(collector.stats_log)} log entries)")
            return
        print(json.dumps(summary.model_dump(), indent=2))
    finally:
        collector.stop()


if __name__ == "__main__":
    main()
