from __future__ import annotations

import json
import logging
import os

import pytest

from serverwatch.core.config.models import PerfCollectorConfig
from serverwatch.core.errors import PerfFetchError
from serverwatch.core.telemetry import perf_collector
from serverwatch.core.telemetry.perf_collector import PerformanceCollector, RecentStats
from serverwatch.core.telemetry.perf_schemas import DataEvent, SvBootEvent, SvCloseEvent, ThreadPerfHist
from serverwatch.core.telemetry.server_monitor import ServerStatus
from serverwatch.core.telemetry.stats_configs import MEGABYTE

from .helpers.fakes import FakeHealthMonitor, FakePlayerlist, FakeRunner


def _cycle(pc, clock, source, *, ticks: int = 1000, secs: float = 60):
    clock.advance(secs)
    source.add_ticks(ticks)
    return pc.collect_stats()


def _data_events(pc):
    return [e for e in pc.stats_log if isinstance(e, DataEvent)]


def _read_file(pc):
    with open(pc.stats_data_path, "r", encoding="utf-8") as f:
        return json.load(f)


def test_boot_then_close_leaves_nothing(make_collector):
    pc = make_collector()
    pc.log_server_boot(12.5)
    pc.log_server_close("killed")
    assert pc.stats_log == []
    assert _read_file(pc)["log"] == []


def test_repeated_boot_keeps_latest(make_collector, clock):
    pc = make_collector()
    pc.log_server_boot(10)
    clock.advance(30)
    pc.log_server_boot(20)
    assert len(pc.stats_log) == 1
    assert isinstance(pc.stats_log[0], SvBootEvent)
    assert pc.stats_log[0].boot_time == 20


def test_repeated_close_is_ignored(make_collector, clock, perf_source):
    pc = make_collector()
    pc.log_server_boot(10)
    assert _cycle(pc, clock, perf_source) is not None
    pc.log_server_close("crashed")
    clock.advance(5)
    pc.log_server_close("crashed again")
    assert [e.type for e in pc.stats_log] == ["svBoot", "data", "svClose"]
    assert isinstance(pc.stats_log[-1], SvCloseEvent)
    assert pc.stats_log[-1].reason == "crashed"


def test_save_gating_over_40_cycles(make_collector, clock, perf_source):
    pc = make_collector()
    pc.log_server_boot(10)
    saved = [_cycle(pc, clock, perf_source) for _ in range(40)]
    data = _data_events(pc)
    # cycles 1, 6, 11, ..., 36
    assert len(data) == 8
    assert [i for i, s in enumerate(saved) if s is not None] == [0, 5, 10, 15, 20, 25, 30, 35]
    assert data[0].perf["svMain"].count == 1000
    assert all(d.perf["svMain"].count == 5000 for d in data[1:])
    assert [e.type for e in pc.stats_log][0] == "svBoot"


def test_saved_snapshot_has_players_and_memory(make_collector, clock, perf_source):
    pc = make_collector()
    pc.log_server_node_memory({"heapUsed": 50 * MEGABYTE, "heapTotal": 100 * MEGABYTE})
    snap = _cycle(pc, clock, perf_source)
    assert snap.players == 5
    assert snap.fxs_memory == 512.0
    assert snap.node_memory == 50.0
    assert snap.perf["svMain"].freqs[0] == pytest.approx(1.0)
    assert sum(snap.perf["svSync"].freqs) == pytest.approx(1.0)


def test_summary_needs_36_snapshots(make_collector, clock, perf_source):
    pc = make_collector()
    for _ in range(171):
        _cycle(pc, clock, perf_source)
    assert len(_data_events(pc)) == 35
    assert pc.get_server_perf_summary() is None

    for _ in range(5):
        _cycle(pc, clock, perf_source)
    summary = pc.get_server_perf_summary()
    assert summary is not None
    assert summary.snaps == 36
    assert summary.freqs[0] == pytest.approx(1.0)
    assert sum(summary.freqs) == pytest.approx(1.0)
    assert summary.players == 5
    assert summary.fxs_memory == 512.0
    assert summary.node_memory is None


def test_summary_is_weighted_by_tick_count(make_collector, clock):
    pc = make_collector(summary_min_snapshots=2)
    empty = ThreadPerfHist(count=1000, freqs=[0.0, 0.0])

    def snap(ts, count, freqs, players):
        main = ThreadPerfHist(count=count, freqs=freqs)
        return DataEvent(ts=ts, players=players, perf={"svMain": main, "svNetwork": empty, "svSync": empty})

    now = clock.time()
    pc.stats_log = [
        snap(now - 600, 1000, [1.0, 0.0], 2),
        snap(now - 300, 3000, [0.0, 1.0], 10),
        # outside the window
        snap(now - 7 * 3600, 9000, [1.0, 0.0], 50),
    ]
    summary = pc.get_server_perf_summary()
    assert summary.snaps == 2
    assert summary.freqs == pytest.approx([0.25, 0.75])
    assert summary.players == 6


def test_boundary_change_wipes_history(make_collector, clock, perf_source, caplog):
    pc = make_collector()
    pc.log_server_boot(10)
    for _ in range(6):
        _cycle(pc, clock, perf_source)
    assert len(_data_events(pc)) == 2

    perf_source.set_boundaries([0.01, 0.1, 1.0, "+Inf"])
    with caplog.at_level(logging.WARNING, logger="serverwatch"):
        snap = _cycle(pc, clock, perf_source)
    assert snap is not None
    assert pc.stats_log == [snap]
    assert len(snap.perf["svMain"].freqs) == 4
    assert _read_file(pc)["lastPerfBoundaries"] == [0.01, 0.1, 1.0, "+Inf"]
    assert any("boundaries changed" in r.message for r in caplog.records)


def test_collection_publishes_recent_stats_once(make_collector, clock, perf_source, monkeypatch):
    pc = make_collector()
    published = []
    original = pc._publish_recent

    def recording():
        original()
        published.append(pc.get_recent_stats())

    monkeypatch.setattr(pc, "_publish_recent", recording)

    _cycle(pc, clock, perf_source)
    assert len(published) == 1
    assert published[0].perf is not None

    published.clear()
    perf_source.set_boundaries([0.01, 0.1, 1.0, "+Inf"])
    _cycle(pc, clock, perf_source)
    assert len(published) == 1
    assert published[0].perf is not None
    assert len(published[0].perf["svMain"].freqs) == 4


def test_counter_reset_saves_counts_since_restart(make_collector, clock, perf_source, caplog):
    pc = make_collector()
    _cycle(pc, clock, perf_source, ticks=5000)
    _cycle(pc, clock, perf_source, ticks=5000)

    perf_source.restart()
    with caplog.at_level(logging.WARNING, logger="serverwatch"):
        snap = _cycle(pc, clock, perf_source, ticks=1200)
    assert snap is not None
    assert snap.perf["svMain"].count == 1200
    assert any("counter reset" in r.message for r in caplog.records)


def test_not_enough_ticks_skips_without_state_change(make_collector, clock, perf_source):
    pc = make_collector()
    before = pc.get_recent_stats()
    assert _cycle(pc, clock, perf_source, ticks=100) is None
    assert pc.stats_log == []
    assert pc.get_recent_stats() is before
    assert pc.get_recent_stats().perf is None


def test_preconditions_skip_before_any_fetch(make_collector, clock, perf_source):
    pc = make_collector()
    pc.attach(runner=FakeRunner(is_running=False))
    assert _cycle(pc, clock, perf_source) is None

    pc.attach(runner=FakeRunner(), health_monitor=FakeHealthMonitor(current_status=ServerStatus.PARTIAL))
    assert _cycle(pc, clock, perf_source) is None

    pc.attach(health_monitor=FakeHealthMonitor(current_status=ServerStatus.ONLINE), playerlist=None)
    assert _cycle(pc, clock, perf_source) is None
    assert perf_source.perf_calls == []

    pc.attach(playerlist=FakePlayerlist(online_count=3))
    assert _cycle(pc, clock, perf_source).players == 3
    assert perf_source.perf_calls == ["127.0.0.1:30120"]


def test_configured_host_overrides_runner(make_collector, clock, perf_source):
    pc = make_collector(server_host="10.0.0.5:30120")
    _cycle(pc, clock, perf_source)
    assert perf_source.perf_calls == ["10.0.0.5:30120"]


def test_invalid_host_raises(make_collector, clock, perf_source):
    pc = make_collector()
    pc.attach(runner=FakeRunner(server_host=None))
    with pytest.raises(PerfFetchError):
        _cycle(pc, clock, perf_source)


def test_fetch_failure_propagates_and_keeps_state(make_collector, clock, perf_source):
    pc = make_collector()
    _cycle(pc, clock, perf_source)
    recent = pc.get_recent_stats()
    log = list(pc.stats_log)

    perf_source.fail_perf = True
    perf_source.fxs_memory = 900.0
    with pytest.raises(PerfFetchError):
        _cycle(pc, clock, perf_source, secs=300)
    assert pc.get_recent_stats() is recent
    assert pc.get_recent_stats().fxs_memory == 512.0
    assert pc.stats_log == log


def test_memory_failure_keeps_stale_value(make_collector, clock, perf_source):
    pc = make_collector()
    assert _cycle(pc, clock, perf_source).fxs_memory == 512.0
    perf_source.fail_memory = True
    snap = _cycle(pc, clock, perf_source, secs=300)
    assert snap is not None
    assert snap.fxs_memory == 512.0


def test_node_memory_payload_validation(make_collector, caplog):
    pc = make_collector()
    pc.log_server_node_memory({"heapUsed": 64 * MEGABYTE, "heapTotal": 128 * MEGABYTE, "rss": 1})
    recent = pc.get_recent_stats()
    assert recent.node_memory.used == 64.0
    assert recent.node_memory.total == 128.0

    with caplog.at_level(logging.WARNING, logger="serverwatch"):
        pc.log_server_node_memory({"heapUsed": "lots"})
        pc.log_server_node_memory({"heapUsed": -1, "heapTotal": 10})
    assert pc.get_recent_stats() is recent
    assert sum("Invalid node memory" in r.message for r in caplog.records) == 2


def test_boot_resets_memory_and_counters(make_collector, clock, perf_source):
    pc = make_collector()
    pc.log_server_node_memory({"heapUsed": MEGABYTE, "heapTotal": MEGABYTE})
    _cycle(pc, clock, perf_source)
    assert pc.get_recent_stats().perf is not None

    pc.log_server_boot(3)
    recent = pc.get_recent_stats()
    assert isinstance(recent, RecentStats)
    assert recent.perf is None
    assert recent.node_memory is None
    assert recent.fxs_memory is None


def test_recent_stats_track_since_boot_counts(make_collector, clock, perf_source):
    pc = make_collector()
    _cycle(pc, clock, perf_source)
    _cycle(pc, clock, perf_source)
    recent = pc.get_recent_stats()
    assert recent.perf["svMain"].count == 2000
    assert recent.players == 5
    assert recent.to_dict()["perf"]["svNetwork"]["count"] == 2000


def test_file_round_trip(make_collector, clock, perf_source, profile):
    pc = make_collector()
    pc.log_server_boot(10)
    for _ in range(12):
        _cycle(pc, clock, perf_source)
    pc.log_server_close("stopped")

    raw = _read_file(pc)
    assert raw["version"] == 1
    assert raw["lastPerfBoundaries"][-1] == "+Inf"
    assert raw["log"][1]["type"] == "data"
    assert "fxsMemory" in raw["log"][1]
    assert raw["log"][0]["bootTime"] == 10

    pc2 = make_collector()
    assert [e.model_dump() for e in pc2.stats_log] == [e.model_dump() for e in pc.stats_log]


def test_loaded_boundaries_are_kept(make_collector, clock, perf_source):
    pc = make_collector()
    for _ in range(6):
        _cycle(pc, clock, perf_source)
    assert len(_data_events(pc)) == 2

    pc2 = make_collector()
    snap = _cycle(pc2, clock, perf_source)
    assert snap is not None
    assert len(_data_events(pc2)) == 3


def test_version_mismatch_resets(make_collector, profile, caplog):
    path = os.path.join(profile.data_dir, "statsData.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"version": 99, "lastPerfBoundaries": None, "log": [{"ts": 1, "type": "svClose", "reason": "x"}]}, f)
    with caplog.at_level(logging.WARNING, logger="serverwatch"):
        pc = make_collector()
    assert pc.stats_log == []
    assert any("unsupported version" in r.message for r in caplog.records)


def test_invalid_file_resets(make_collector, profile):
    path = os.path.join(profile.data_dir, "statsData.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"version": 1, "lastPerfBoundaries": None, "log": [{"ts": 1, "type": "nope"}]}, f)
    assert make_collector().stats_log == []

    with open(path, "w", encoding="utf-8") as f:
        f.write("{not json")
    assert make_collector().stats_log == []


@pytest.mark.parametrize("version", [True, 1.0, "1"])
def test_non_integer_version_resets(make_collector, profile, caplog, version):
    path = os.path.join(profile.data_dir, "statsData.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"version": version, "lastPerfBoundaries": None, "log": [{"ts": 1, "type": "svClose", "reason": "x"}]}, f)
    with caplog.at_level(logging.WARNING, logger="serverwatch"):
        pc = make_collector()
    assert pc.stats_log == []
    assert any("unsupported version" in r.message for r in caplog.records)


def test_undecodable_file_resets(make_collector, profile, caplog):
    path = os.path.join(profile.data_dir, "statsData.json")
    with open(path, "wb") as f:
        f.write(b'{"version": 1, "log": [], "x": "\xff\xfe"}')
    with caplog.at_level(logging.WARNING, logger="serverwatch"):
        pc = make_collector()
    assert pc.stats_log == []
    assert pc.get_recent_stats().perf is None
    assert any("will be reset" in r.message for r in caplog.records)


def test_unexpected_load_error_resets(make_collector, profile, monkeypatch, caplog):
    with open(os.path.join(profile.data_dir, "statsData.json"), "w", encoding="utf-8") as f:
        json.dump({"version": 1, "lastPerfBoundaries": None, "log": []}, f)

    def boom(*_a, **_k):
        raise RuntimeError("optimizer exploded")

    monkeypatch.setattr(perf_collector, "optimize_stats_log", boom)
    with caplog.at_level(logging.WARNING, logger="serverwatch"):
        pc = make_collector()
    assert pc.stats_log == []
    assert pc._last_perf_boundaries is None
    assert any("optimizer exploded" in r.message for r in caplog.records)


def test_load_drops_expired_entries(make_collector, clock, profile):
    hist = {"count": 1000, "freqs": [1.0, 0.0]}
    now = clock.time()
    doc = {
        "version": 1,
        "lastPerfBoundaries": [0.1, "+Inf"],
        "log": [
            {"ts": now - 20 * 86400, "type": "data", "players": 1, "fxsMemory": None, "nodeMemory": None,
             "perf": {"svMain": hist, "svNetwork": hist, "svSync": hist}},
            {"ts": now - 60, "type": "data", "players": 2, "fxsMemory": 10.0, "nodeMemory": None,
             "perf": {"svMain": hist, "svNetwork": hist, "svSync": hist}},
        ],
    }
    with open(os.path.join(profile.data_dir, "statsData.json"), "w", encoding="utf-8") as f:
        json.dump(doc, f)
    pc = make_collector()
    assert len(pc.stats_log) == 1
    assert pc.stats_log[0].players == 2


def test_save_failure_keeps_memory_state(tmp_path, clock, perf_source, caplog):
    blocker = tmp_path / "data"
    blocker.write_text("not a directory", encoding="utf-8")
    pc = PerformanceCollector(cfg=PerfCollectorConfig(enabled=False), data_dir=str(blocker), source=perf_source, clock=clock.time)
    pc.attach(runner=FakeRunner(), health_monitor=FakeHealthMonitor(), playerlist=FakePlayerlist())
    try:
        with caplog.at_level(logging.WARNING, logger="serverwatch"):
            pc.log_server_boot(5)
            assert pc.save_stats_history() is False
        assert len(pc.stats_log) == 1
        assert any("Failed to save" in r.message for r in caplog.records)
    finally:
        pc.stop()
