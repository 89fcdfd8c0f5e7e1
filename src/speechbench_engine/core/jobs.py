"""In-process job registry and background task supervision."""

import asyncio
import dataclasses
import logging
import math
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Coroutine, Dict, List, Optional, Set

from speechbench_engine.core.config import settings

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


class JobStatus(str, Enum):
    """Status of a volatile (ad-hoc) job."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class BatchStatus(str, Enum):
    """Status of a persisted batch test."""
    DRAFT = "DRAFT"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    PAUSED = "PAUSED"


class ResultStatus(str, Enum):
    """Outcome of one (work unit, provider, run) attempt."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"


def clamp_int(value: Any, minimum: int, maximum: int) -> int:
    """Coerce ``value`` to an int inside ``[minimum, maximum]``.

    Non-numeric and non-finite input collapses to ``minimum``; fractional
    input is truncated toward zero.
    """
    if isinstance(value, bool):
        value = int(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return minimum
    if not math.isfinite(number):
        return minimum
    return max(minimum, min(maximum, int(number)))


def compute_percentage(completed: int, total: int) -> int:
    """Rounded completion percentage, capped at 100."""
    if total <= 0:
        return 0
    # half-up rounding, not banker's rounding
    return int(math.floor(min(100.0, completed / total * 100) + 0.5))


def generate_job_id() -> str:
    """Millisecond timestamp plus a random suffix."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"{int(time.time() * 1000)}-{suffix}"


@dataclass(frozen=True)
class Job:
    """Snapshot of a volatile job. Replaced as a whole on every patch."""
    job_id: str
    status: JobStatus = JobStatus.PENDING
    total: int = 0
    completed: int = 0
    failed: int = 0
    percentage: int = 0
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    current: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    # Shared across snapshots of the same job; append-only.
    results: List[Dict[str, Any]] = field(default_factory=list, compare=False)

    @property
    def results_count(self) -> int:
        return len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API response."""
        return {
            "jobId": self.job_id,
            "status": self.status.value,
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "percentage": self.percentage,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "current": self.current,
            "error": self.error,
        }


class JobStore:
    """Process-wide registry of volatile jobs.

    Entries are never evicted. Each job has at most one writer (the executor
    spawned by whoever created it); readers always see a whole snapshot.
    """

    _instance: Optional["JobStore"] = None

    PATCHABLE_FIELDS = frozenset(
        {"status", "total", "completed", "failed", "started_at", "completed_at", "current", "error"}
    )

    def __init__(self, max_total: Optional[int] = None):
        self._jobs: Dict[str, Job] = {}
        self._max_total = max_total if max_total is not None else settings.MAX_JOB_TOTAL

    @classmethod
    def get_instance(cls) -> "JobStore":
        """Get the process default store."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def __len__(self) -> int:
        return len(self._jobs)

    def create(self, total: Any) -> Job:
        """Register a new PENDING job and return it."""
        job_id = generate_job_id()
        while job_id in self._jobs:
            job_id = generate_job_id()

        job = Job(
            job_id=job_id,
            total=clamp_int(total, 0, self._max_total),
            started_at=datetime.utcnow(),
        )
        self._jobs[job_id] = job
        logger.info("Created job %s (total=%d, jobs in store=%d)", job_id, job.total, len(self._jobs))
        return job

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def patch(self, job_id: str, **fields: Any) -> Optional[Job]:
        """Merge ``fields`` into the stored job and recompute the percentage."""
        unknown = set(fields) - self.PATCHABLE_FIELDS
        if unknown:
            raise TypeError(f"Cannot patch job fields: {', '.join(sorted(unknown))}")

        job = self._jobs.get(job_id)
        if job is None:
            return None

        merged = dataclasses.replace(job, **fields)
        merged = dataclasses.replace(
            merged, percentage=compute_percentage(merged.completed, merged.total)
        )
        self._jobs[job_id] = merged
        return merged

    def append_result(self, job_id: str, result: Dict[str, Any]) -> None:
        """Append one result; unknown jobs are ignored."""
        job = self._jobs.get(job_id)
        if job is None:
            logger.debug("Dropping result for unknown job %s", job_id)
            return
        job.results.append(result)


class JobManager:
    """Supervises detached executor tasks started from request handlers."""

    _instance: Optional["JobManager"] = None

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def get_instance(cls) -> "JobManager":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def running_count(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        """Run ``coro`` in the background without awaiting it."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.info("Spawned background task %s", name)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background task %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task %s crashed: %s", task.get_name(), exc, exc_info=exc
            )

    async def stop(self) -> None:
        """Cancel outstanding tasks."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Job manager stopped (%d tasks cancelled)", len(tasks))
