"""Run exactly one compute per fingerprint; everyone else observes the job record."""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pagepersona.jobs.manager import JobManager
from pagepersona.jobs.models import JobRecord, JobStage, JobStatus

logger = logging.getLogger(__name__)

ProgressReporter = Callable[[JobStage, int], Awaitable[None]]
Pipeline = Callable[[ProgressReporter], Awaitable[Any]]
ResultWriter = Callable[[Any], Awaitable[Optional[str]]]


@dataclass
class Claim:
    """Outcome of claiming a job id: acquired means this caller holds the lock and must execute."""

    job_id: str
    acquired: bool
    job: Optional[JobRecord] = None

    @property
    def finished(self) -> bool:
        return self.job is not None and self.job.status == JobStatus.DONE


@dataclass
class RunOutcome:
    """What run_once did: ran the pipeline itself, or returned someone else's snapshot (possibly None)."""

    job_id: str
    ran: bool
    job: Optional[JobRecord]


class JobRunner:
    """Drives the job lifecycle around an opaque pipeline using a JobManager."""

    def __init__(self, manager: JobManager):
        self.manager = manager

    async def claim(self, job_id: str) -> Claim:
        """Short-circuit on a finished job whose cache entry is still present, otherwise try the lock;
        the lock holder creates the queued record."""
        existing = await self.manager.get_job(job_id)
        if existing is not None and existing.status == JobStatus.DONE:
            if await self.manager.result_still_cached(existing):
                return Claim(job_id=job_id, acquired=False, job=existing)
            logger.info("job_result_invalidated", extra={"job_id": job_id, "cache_key": existing.cache_key})

        if not await self.manager.acquire_lock(job_id):
            return Claim(job_id=job_id, acquired=False, job=await self.manager.get_job(job_id))

        job = await self.manager.create_job(job_id)
        return Claim(job_id=job_id, acquired=True, job=job)

    async def execute(
        self,
        job_id: str,
        pipeline: Pipeline,
        on_success: Optional[ResultWriter] = None,
        *,
        reraise: bool = False,
    ) -> Optional[JobRecord]:
        """Run pipeline as the lock holder. Completes or fails the job, then always releases the lock.
        Pipeline exceptions are recorded on the job and only re-raised when reraise is set; no result is written on failure."""

        async def report(stage: JobStage, progress: int) -> None:
            await self.manager.update_job_progress(job_id, stage, progress)

        try:
            result = await pipeline(report)
            self.manager.ensure_storable(job_id, result)
            cache_key = await on_success(result) if on_success is not None else None
            job = await self.manager.complete_job(job_id, result, cache_key=cache_key)
            if job is None:
                # record lost (store outage or expiry); hand the result back anyway
                job = JobRecord(job_id=job_id, status=JobStatus.DONE, progress=100, result=result, cache_key=cache_key)
            logger.info("job_done", extra={"job_id": job_id})
            return job
        except Exception as e:
            logger.warning("job_failed", exc_info=True, extra={"job_id": job_id})
            job = await self.manager.fail_job(job_id, e)
            if job is None:
                job = JobRecord(job_id=job_id, status=JobStatus.ERROR, error=str(e) or type(e).__name__)
            if reraise:
                raise
            return job
        finally:
            await self.manager.release_lock(job_id)

    async def run_once(
        self,
        job_id: str,
        pipeline: Pipeline,
        on_success: Optional[ResultWriter] = None,
        *,
        reraise: bool = False,
    ) -> RunOutcome:
        claim = await self.claim(job_id)
        if not claim.acquired:
            return RunOutcome(job_id=job_id, ran=False, job=claim.job)
        job = await self.execute(job_id, pipeline, on_success, reraise=reraise)
        return RunOutcome(job_id=job_id, ran=True, job=job)

    async def wait_for_job(self, job_id: str, *, timeout: float, interval: float = 0.5) -> Optional[JobRecord]:
        """Poll get_job until the record is terminal or timeout elapses; returns the last snapshot seen."""
        deadline = time.monotonic() + timeout
        job = await self.manager.get_job(job_id)
        while (job is None or not job.terminal) and time.monotonic() < deadline:
            await asyncio.sleep(interval)
            job = await self.manager.get_job(job_id)
        return job
