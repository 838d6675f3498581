"""Narrow interfaces the probes use to reach the host application's subsystems.

The host wires concrete adapters (its DB pool, cache client, job queue, ...)
into ``MetricsCollector``.  Any of them may be omitted; the matching probe
then reports itself as unavailable and writes no snapshot.
"""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel


class PoolStats(BaseModel):
    used: int
    total: int
    waiting: int = 0


class JobQueueStats(BaseModel):
    pending: int
    processing: int
    success_rate: float


class RunningJob(BaseModel):
    type: str
    age_secs: float


class PoolStatsProvider(Protocol):
    async def pool_stats(self) -> PoolStats: ...


class CacheClient(Protocol):
    async def ping(self) -> None: ...

    async def info_stats(self) -> dict[str, int]:
        """Server counters; ``keyspace_hits`` / ``keyspace_misses`` are read."""
        ...


class ObjectStorageClient(Protocol):
    async def ping(self) -> None:
        """Cheap round trip (e.g. list one key) that raises on failure."""
        ...


class JobQueueStatusProvider(Protocol):
    async def get_stats(self) -> JobQueueStats: ...

    async def get_running_jobs_with_age(self) -> list[RunningJob]: ...

    async def get_failed_job_times(self, limit: int = 100) -> list[float]:
        """Failure timestamps of the most recent failed jobs."""
        ...

    async def get_pending_job_ages(self, limit: int = 100) -> list[float]:
        """Ages in seconds of pending jobs."""
        ...
