from __future__ import annotations

import os

import pytest

from serverwatch.core.config.manager import ConfigManager
from serverwatch.core.config.models import PerfCollectorConfig
from serverwatch.core.config.paths import ProfilePaths
from serverwatch.core.telemetry.perf_collector import PerformanceCollector

from .helpers.fakes import FakeClock, FakeHealthMonitor, FakePerfSource, FakePlayerlist, FakeRunner


@pytest.fixture
def profile(tmp_path):
    """
    Provides an isolated profile root with config/ and data/ under tmp_path.
    """
    fs = ProfilePaths(root=str(tmp_path))
    os.makedirs(fs.config_dir, exist_ok=True)
    os.makedirs(fs.data_dir, exist_ok=True)
    return fs


@pytest.fixture
def config_manager(profile):
    cm = ConfigManager(fs=profile, logger=None, read_only=False)
    cm.load_all()
    return cm


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def perf_source():
    return FakePerfSource()


@pytest.fixture
def make_collector(profile, clock, perf_source):
    made = []

    def _make(**cfg_over):
        cfg = PerfCollectorConfig(**{"enabled": False, **cfg_over})
        pc = PerformanceCollector(cfg=cfg, data_dir=profile.data_dir, source=perf_source, clock=clock.time)
        pc.attach(runner=FakeRunner(), health_monitor=FakeHealthMonitor(), playerlist=FakePlayerlist())
        made.append(pc)
        return pc

    yield _make
    for pc in made:
        pc.stop()
