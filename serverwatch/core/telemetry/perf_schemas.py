from __future__ import annotations

from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from serverwatch.core.telemetry.stats_configs import PERF_DATA_THREAD_NAMES

ThreadName = Literal["svMain", "svNetwork", "svSync"]
PerfBoundary = Union[Literal["+Inf"], float]
PerfBoundaries = List[PerfBoundary]


def _check_threads(value: Dict[str, object]) -> Dict[str, object]:
    missing = [t for t in PERF_DATA_THREAD_NAMES if t not in value]
    if missing:
        raise ValueError(f"missing threads: {', '.join(missing)}")
    return value


class ThreadPerfCounts(BaseModel):
    """Raw tick counts of one thread: total and per latency bucket (not cumulative)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    count: int = Field(ge=0)
    buckets: List[Annotated[int, Field(ge=0)]]


class ThreadPerfHist(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    count: int = Field(ge=0)
    freqs: List[Annotated[float, Field(ge=0)]]


PerfCounts = Dict[str, ThreadPerfCounts]
PerfHist = Dict[str, ThreadPerfHist]


class SvBootEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    ts: float
    type: Literal["svBoot"] = "svBoot"
    boot_time: float = Field(alias="bootTime")


class SvCloseEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    ts: float
    type: Literal["svClose"] = "svClose"
    reason: str


class DataEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    ts: float
    type: Literal["data"] = "data"
    players: int = Field(ge=0)
    fxs_memory: Optional[float] = Field(default=None, alias="fxsMemory")
    node_memory: Optional[float] = Field(default=None, alias="nodeMemory")
    perf: Dict[ThreadName, ThreadPerfHist]

    @field_validator("perf")
    @classmethod
    def check_all_threads(cls, value):
        return _check_threads(value)


StatsLogEvent = Annotated[Union[SvBootEvent, SvCloseEvent, DataEvent], Field(discriminator="type")]
StatsLog = List[StatsLogEvent]


class StatsFile(BaseModel):
    """The whole statsData.json document."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    version: int = Field(strict=True)
    last_perf_boundaries: Optional[PerfBoundaries] = Field(default=None, alias="lastPerfBoundaries")
    log: StatsLog = Field(default_factory=list)


class NodeHeapEvent(BaseModel):
    """Memory usage report pushed by the host runtime."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    heap_used: float = Field(ge=0, alias="heapUsed")
    heap_total: float = Field(ge=0, alias="heapTotal")


class PerfSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    snaps: int
    freqs: List[float]
    players: Optional[float] = None
    fxs_memory: Optional[float] = None
    node_memory: Optional[float] = None
