"""
Job manager: deterministic job identity, distributed locking and job lifecycle records.

Key layout in the shared store:
  job:<job_id>       JSON JobRecord, TTL re-applied on every write (sliding)
  job:lock:<job_id>  sentinel, TTL-bound; expiry recovers from crashed holders

No method raises past this module: store failures degrade to the most
conservative answer (lock not acquired, job absent, update skipped).
"""
import hashlib
import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from pagepersona.jobs.models import JobRecord, JobStage, JobStatus, utcnow
from pagepersona.store import KeyValueStore, StoreError

logger = logging.getLogger(__name__)

JOB_ID_LENGTH = 32
LOCK_SENTINEL = "locked"


def compute_job_id(source: str, persona: str, options: Optional[Dict[str, Any]] = None) -> str:
    """Return a stable 32-char hex id for (source, persona, options). Options are serialized with sorted keys so dict ordering never changes the id.
    Why available: Identical requests share one job id, which is what makes locking and deduplication possible."""
    payload = json.dumps(
        {"url": source, "persona": persona, "options": options or {}},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:JOB_ID_LENGTH]


def job_key(job_id: str) -> str:
    return f"job:{job_id}"


def lock_key(job_id: str) -> str:
    return f"job:lock:{job_id}"


def _error_message(error: Any) -> str:
    if isinstance(error, str):
        return error or "Unknown error"
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error) if error is not None else "Unknown error"


class JobManager:
    """Tracks job records and per-job locks in the shared store."""

    def __init__(self, store: KeyValueStore, *, job_ttl_seconds: int = 3600, lock_ttl_seconds: int = 300):
        if lock_ttl_seconds >= job_ttl_seconds:
            raise ValueError("lock TTL must be lower than job TTL")
        self.store = store
        self.job_ttl_seconds = job_ttl_seconds
        self.lock_ttl_seconds = lock_ttl_seconds

    # -------------------------
    # Locking
    # -------------------------

    async def acquire_lock(self, job_id: str) -> bool:
        """SET job:lock:<id> NX EX lock_ttl. True iff this caller now owns the lock; False on contention or store error."""
        try:
            acquired = await self.store.set(lock_key(job_id), LOCK_SENTINEL, ex=self.lock_ttl_seconds, nx=True)
        except StoreError:
            logger.error("job_lock_acquire_failed", extra={"job_id": job_id})
            return False
        if acquired:
            logger.info("job_lock_acquired", extra={"job_id": job_id})
        else:
            logger.info("job_lock_held_elsewhere", extra={"job_id": job_id})
        return acquired

    async def release_lock(self, job_id: str) -> None:
        """Delete the lock. Idempotent; a failed release is left to the lock TTL."""
        try:
            await self.store.delete(lock_key(job_id))
        except StoreError:
            logger.error("job_lock_release_failed", extra={"job_id": job_id})
            return
        logger.info("job_lock_released", extra={"job_id": job_id})

    async def renew_lock(self, job_id: str) -> bool:
        """Push the lock expiry forward by a full lock TTL if the lock still exists.
        Hook for long-running pipelines; the base flow does not call it."""
        key = lock_key(job_id)
        try:
            if await self.store.get(key) is None:
                return False
            await self.store.setex(key, self.lock_ttl_seconds, LOCK_SENTINEL)
        except StoreError:
            logger.error("job_lock_renew_failed", extra={"job_id": job_id})
            return False
        return True

    async def result_still_cached(self, job: JobRecord) -> bool:
        """False once the cache entry a done job points at has been deleted or expired.
        Jobs without a cache back-reference, and unreadable stores, count as cached."""
        if not job.cache_key:
            return True
        try:
            return await self.store.get(job.cache_key) is not None
        except StoreError:
            return True

    # -------------------------
    # Records
    # -------------------------

    def ensure_storable(self, job_id: str, result: Any) -> None:
        """Raise ValueError when result cannot be serialized onto a job record."""
        JobRecord(job_id=job_id, status=JobStatus.DONE, result=result).model_dump_json()

    async def _write(self, record: JobRecord) -> bool:
        try:
            payload = record.model_dump_json()
        except ValueError:
            logger.error("job_record_not_serializable", extra={"job_id": record.job_id})
            return False
        try:
            await self.store.setex(job_key(record.job_id), self.job_ttl_seconds, payload)
        except StoreError:
            logger.error("job_write_failed", extra={"job_id": record.job_id})
            return False
        return True

    async def create_job(self, job_id: str, **initial: Any) -> JobRecord:
        """Write a fresh queued record, overwriting any existing one. Returns the record even if the write failed."""
        now = utcnow()
        fields = {"status": JobStatus.QUEUED, "created_at": now, "updated_at": now}
        fields.update(initial)
        record = JobRecord(job_id=job_id, **fields)
        if await self._write(record):
            logger.info("job_created", extra={"job_id": job_id, "status": record.status.value})
        return record

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        """Return the record, or None when it never existed, expired, is unreadable or the store is down."""
        try:
            raw = await self.store.get(job_key(job_id))
        except StoreError:
            return None
        if raw is None:
            return None
        try:
            return JobRecord.model_validate_json(raw)
        except ValidationError:
            logger.error("job_record_unreadable", extra={"job_id": job_id})
            return None

    async def update_job(self, job_id: str, **changes: Any) -> Optional[JobRecord]:
        """Merge changes into an existing record, refresh updated_at and re-apply the full job TTL.
        Never creates a record; terminal records are left untouched and status never moves backwards."""
        existing = await self.get_job(job_id)
        if existing is None:
            logger.warning("job_update_missing", extra={"job_id": job_id})
            return None
        if existing.terminal:
            logger.warning("job_update_terminal", extra={"job_id": job_id, "status": existing.status.value})
            return None

        data = existing.model_dump()
        data.update(changes)
        data["updated_at"] = utcnow()
        try:
            updated = JobRecord.model_validate(data)
        except ValidationError:
            logger.error("job_update_invalid", extra={"job_id": job_id, "fields": sorted(changes)})
            return None
        if updated.status.rank < existing.status.rank:
            logger.warning(
                "job_update_status_regression",
                extra={"job_id": job_id, "status": existing.status.value, "requested": updated.status.value},
            )
            return None

        if not await self._write(updated):
            return None
        logger.info(
            "job_updated",
            extra={
                "job_id": job_id,
                "status": updated.status.value,
                "stage": updated.stage.value if updated.stage else None,
                "progress": updated.progress,
            },
        )
        return updated

    async def update_job_progress(self, job_id: str, stage: JobStage, progress: int) -> Optional[JobRecord]:
        return await self.update_job(
            job_id,
            status=JobStatus.RUNNING,
            stage=stage,
            progress=min(100, max(0, int(progress))),
        )

    async def complete_job(self, job_id: str, result: Any, cache_key: Optional[str] = None) -> Optional[JobRecord]:
        return await self.update_job(
            job_id,
            status=JobStatus.DONE,
            result=result,
            error=None,
            progress=100,
            cache_key=cache_key,
        )

    async def fail_job(self, job_id: str, error: Any) -> Optional[JobRecord]:
        """Terminal transition to error. Accepts a message, an exception or any error-like value."""
        return await self.update_job(job_id, status=JobStatus.ERROR, error=_error_message(error), result=None)
