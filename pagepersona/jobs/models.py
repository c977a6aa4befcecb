"""Job record stored in the shared store: track status (queued / running / done / error), stage, progress and result."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.ERROR)

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {JobStatus.QUEUED: 0, JobStatus.RUNNING: 1, JobStatus.DONE: 2, JobStatus.ERROR: 2}


class JobStage(str, Enum):
    FETCH = "fetch"
    CLEAN = "clean"
    MODEL_CALL = "model-call"
    PERSIST = "persist"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobRecord(BaseModel):
    """A single compute attempt for one request fingerprint: job_id, status, optional stage/progress, result or error, timestamps and cache back-reference.
    Why available: Stored under job:<job_id> so any instance can report progress and hand the finished result to pollers."""

    job_id: str
    status: JobStatus = JobStatus.QUEUED
    stage: Optional[JobStage] = None
    progress: int = Field(0, ge=0, le=100)
    result: Optional[Any] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    cache_key: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.status.terminal
