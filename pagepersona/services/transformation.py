"""
Transformation orchestration: result cache -> job dedup/lock -> compute pipeline.

Only the lock holder runs the pipeline; other callers for the same fingerprint
wait on the job record. When the shared store is down the request still gets
an answer through an unlocked, uncached run.
"""
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from pagepersona.cache import ResultCache, Source
from pagepersona.core.config import Settings, settings as default_settings
from pagepersona.guardrails.errors import ErrorCode, TransformError
from pagepersona.jobs import JobManager, JobRecord, JobRunner, JobStage, JobStatus, compute_job_id
from pagepersona.store import KeyValueStore
from pagepersona.transform.transformer import ContentTransformer, require_persona

logger = logging.getLogger(__name__)

Scheduler = Callable[..., None]


class JobPending(Exception):
    """Another caller holds the job and it did not finish within the wait budget."""

    def __init__(self, job_id: str, job: Optional[JobRecord]):
        super().__init__(f"job {job_id} still in progress")
        self.job_id = job_id
        self.job = job


@dataclass
class TransformOutcome:
    job_id: str
    result: Dict[str, Any]
    cached: bool = False
    job: Optional[JobRecord] = None


def options_variant(options: Optional[Dict[str, Any]]) -> Optional[str]:
    """Short stable tag for non-empty options so differently-configured results do not share a cache entry."""
    if not options:
        return None
    payload = json.dumps(options, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:12]


def job_source(source: Source) -> str:
    return source.value if not source.is_text else f"text:{source.value}"


class TransformationService:
    def __init__(
        self,
        *,
        store: KeyValueStore,
        jobs: JobManager,
        cache: ResultCache,
        transformer: ContentTransformer,
        config: Optional[Settings] = None,
    ):
        self.store = store
        self.jobs = jobs
        self.cache = cache
        self.transformer = transformer
        self.runner = JobRunner(jobs)
        self.config = config or default_settings

    def job_id_for(self, source: Source, persona_id: str, options: Optional[Dict[str, Any]] = None) -> str:
        return compute_job_id(job_source(source), persona_id, options)

    def _pipeline(self, source: Source, persona_id: str):
        async def run(report):
            result = await self.transformer.transform(source, persona_id, report)
            await report(JobStage.PERSIST, 90)
            return result

        return run

    def _writer(self, source: Source, persona_id: str, variant: Optional[str]):
        async def write(result):
            return await self.cache.set(source, persona_id, result, variant)

        return write

    async def transform(self, source: Source, persona_id: str, options: Optional[Dict[str, Any]] = None) -> TransformOutcome:
        """Return the artifact for (source, persona, options), computing it at most once across the fleet."""
        require_persona(persona_id)
        variant = options_variant(options)
        job_id = self.job_id_for(source, persona_id, options)

        cached = await self.cache.get(source, persona_id, variant)
        if cached is not None:
            return TransformOutcome(job_id=job_id, result=cached, cached=True)

        pipeline = self._pipeline(source, persona_id)
        outcome = await self.runner.run_once(job_id, pipeline, self._writer(source, persona_id, variant), reraise=True)
        if outcome.ran:
            return TransformOutcome(job_id=job_id, result=outcome.job.result, job=outcome.job)

        job = outcome.job
        if job is None and not await self.store.ping():
            logger.warning("store_unavailable_running_unlocked", extra={"job_id": job_id})
            result = await pipeline(_ignore_progress)
            return TransformOutcome(job_id=job_id, result=result)

        if job is None or not job.terminal:
            job = await self.runner.wait_for_job(
                job_id,
                timeout=self.config.job_wait_timeout_seconds,
                interval=self.config.job_poll_interval_seconds,
            )
        return self._from_job(job_id, job)

    def _from_job(self, job_id: str, job: Optional[JobRecord]) -> TransformOutcome:
        if job is None or not job.terminal:
            raise JobPending(job_id, job)
        if job.status == JobStatus.ERROR:
            raise TransformError(ErrorCode.TRANSFORMATION_FAILED, job.error or "Transformation failed")
        return TransformOutcome(job_id=job_id, result=job.result, job=job)

    async def submit(
        self,
        source: Source,
        persona_id: str,
        options: Optional[Dict[str, Any]],
        schedule: Scheduler,
    ) -> Union[TransformOutcome, JobRecord]:
        """Start a background run (via schedule, e.g. BackgroundTasks.add_task) and return the job snapshot to poll.
        A cache hit returns the finished outcome directly."""
        require_persona(persona_id)
        variant = options_variant(options)
        job_id = self.job_id_for(source, persona_id, options)

        cached = await self.cache.get(source, persona_id, variant)
        if cached is not None:
            return TransformOutcome(job_id=job_id, result=cached, cached=True)

        claim = await self.runner.claim(job_id)
        if claim.acquired:
            schedule(self.runner.execute, job_id, self._pipeline(source, persona_id), self._writer(source, persona_id, variant))
            return claim.job
        if claim.job is not None:
            return claim.job
        if not await self.store.ping():
            raise TransformError(
                ErrorCode.SERVICE_UNAVAILABLE,
                "Background jobs are unavailable right now. Please use the synchronous endpoint.",
            )
        # lock holder has not written the record yet
        return JobRecord(job_id=job_id, status=JobStatus.QUEUED)

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        return await self.jobs.get_job(job_id)

    async def invalidate(self, source: Source, persona_id: str, options: Optional[Dict[str, Any]] = None) -> bool:
        return await self.cache.invalidate(source, persona_id, options_variant(options))


async def _ignore_progress(stage: JobStage, progress: int) -> None:
    return None
