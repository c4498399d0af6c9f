from __future__ import annotations

import argparse
import json

from serverwatch.core.config import ConfigManager, ProfilePaths


def main() -> None:
    ap = argparse.ArgumentParser(description="Print the effective serverwatch config.")
    ap.add_argument("--profile", default=".", help="Profile directory.")
    args = ap.parse_args()
    cm = ConfigManager(fs=ProfilePaths(args.profile), logger=None, read_only=True)
    cfg = cm.load_all()
    print(json.dumps(cfg.model_dump(), indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
