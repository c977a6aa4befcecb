import logging
import re
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from pagepersona.cache import ResultCache, Source
from pagepersona.core.config import Settings, settings as default_settings
from pagepersona.guardrails.errors import TransformError, as_http_500
from pagepersona.guardrails.rate_limit import FallbackRateLimitStore, RateLimitExceeded, SharedRateLimitStore
from pagepersona.guardrails.tiers import TIER_LIMITS, build_tier_resolver, create_tiered_limiter
from pagepersona.jobs import JobManager, JobRecord
from pagepersona.models.schemas import (
    AsyncTransformRequest,
    CacheInvalidateRequest,
    JobStatusResponse,
    LimitsResponse,
    PersonaOut,
    PersonasResponse,
    TierLimitOut,
    TransformRequest,
    TransformResponse,
    TransformTextRequest,
)
from pagepersona.observability.middleware import RequestTimingMiddleware
from pagepersona.services.transformation import JobPending, TransformationService, TransformOutcome
from pagepersona.store import KeyValueStore, build_store
from pagepersona.transform.fetcher import validate_url
from pagepersona.transform.personas import all_personas
from pagepersona.transform.transformer import ContentTransformer

logger = logging.getLogger(__name__)

JOB_ID_RE = re.compile(r"^[0-9a-f]{32}$")

router = APIRouter()


# -------------------------
# Dependencies
# -------------------------

async def transform_limit(request: Request, response: Response):
    """Tiered quota for the expensive transform endpoints."""
    return await request.app.state.transform_limiter.check(request, response)


async def api_limit(request: Request, response: Response):
    """Tiered quota for cheap read endpoints."""
    return await request.app.state.api_limiter.check(request, response)


def get_service(request: Request) -> TransformationService:
    return request.app.state.service


def _job_out(job: JobRecord) -> JobStatusResponse:
    return JobStatusResponse(
        job_id=job.job_id,
        status=job.status.value,
        stage=job.stage.value if job.stage else None,
        progress=job.progress,
        result=job.result,
        error=job.error,
        created_at=job.created_at.isoformat(),
        updated_at=job.updated_at.isoformat(),
    )


def _source_of(req: AsyncTransformRequest) -> Source:
    return Source.text(req.text) if req.text else Source.url(validate_url(req.url))


def _transform_response(outcome: TransformOutcome) -> TransformResponse:
    return TransformResponse(job_id=outcome.job_id, cached=outcome.cached, data=outcome.result)


async def _run_transform(service: TransformationService, source: Source, persona: str, options) -> TransformResponse:
    try:
        outcome = await service.transform(source, persona, options)
    except (TransformError, JobPending):
        raise
    except Exception as e:
        raise as_http_500(e)
    return _transform_response(outcome)


# -------------------------
# Root / health / limits
# -------------------------

@router.get("/")
def root():
    """Returns a minimal welcome payload with app name and docs URL."""
    return {"app": "PagePersona", "docs": "/docs"}


@router.get("/health")
async def health(request: Request):
    """Returns 200 with API status and whether the shared store answers. Used by load balancers and probes.
    Why available: The API stays up when the store is down, so store health is reported rather than failed."""
    store_up = await request.app.state.store.ping()
    return {"status": "ok", "store": "up" if store_up else "down"}


@router.get("/limits", response_model=LimitsResponse, dependencies=[Depends(api_limit)])
def limits(request: Request):
    """Returns job/cache TTLs, text size limit and per-tier quotas.
    Why available: Lets the UI and clients display limits before submitting."""
    config: Settings = request.app.state.config
    table = {
        endpoint: {tier.value: TierLimitOut(max_requests=lim.max_requests, window_seconds=lim.window_ms // 1000) for tier, lim in row.items()}
        for endpoint, row in TIER_LIMITS.items()
    }
    return LimitsResponse(
        job_ttl_seconds=config.job_ttl_seconds,
        job_lock_ttl_seconds=config.job_lock_ttl_seconds,
        cache_ttl_seconds=config.cache_ttl_seconds,
        max_text_chars=config.max_text_chars,
        rate_limits=table,
    )


@router.get("/personas", response_model=PersonasResponse, dependencies=[Depends(api_limit)])
def personas():
    """Lists the personas a transformation can use."""
    return PersonasResponse(personas=[PersonaOut(**p.public()) for p in all_personas()])


# -------------------------
# Transform
# -------------------------

@router.post("/transform", response_model=TransformResponse, dependencies=[Depends(transform_limit)])
async def transform_url(req: TransformRequest, service: TransformationService = Depends(get_service)):
    """Fetches the page, cleans it and rewrites it in the persona's voice. Identical concurrent requests share one run; finished results are cached.
    Why available: Primary feature of the service."""
    return await _run_transform(service, Source.url(validate_url(req.url)), req.persona, req.options)


@router.post("/transform/text", response_model=TransformResponse, dependencies=[Depends(transform_limit)])
async def transform_text(req: TransformTextRequest, service: TransformationService = Depends(get_service)):
    """Rewrites pasted text in the persona's voice (no fetch stage)."""
    return await _run_transform(service, Source.text(req.text), req.persona, req.options)


@router.post("/transform/async", dependencies=[Depends(transform_limit)])
async def transform_async(
    req: AsyncTransformRequest,
    background_tasks: BackgroundTasks,
    service: TransformationService = Depends(get_service),
):
    """Starts a background transformation and returns the job to poll via GET /jobs/{job_id} (queued / running / done / error).
    A cached result is returned immediately with 200."""
    try:
        submitted = await service.submit(_source_of(req), req.persona, req.options, background_tasks.add_task)
    except TransformError:
        raise
    except Exception as e:
        raise as_http_500(e)
    if isinstance(submitted, TransformOutcome):
        return _transform_response(submitted)
    return JSONResponse(status_code=202, content=_job_out(submitted).model_dump(mode="json"))


@router.get("/jobs/{job_id}", response_model=JobStatusResponse, dependencies=[Depends(api_limit)])
async def job_status(job_id: str, service: TransformationService = Depends(get_service)):
    """Returns the job record for polling. Unknown and expired jobs are both 404."""
    if not JOB_ID_RE.match(job_id):
        raise HTTPException(status_code=400, detail="Invalid job_id")
    job = await service.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_out(job)


@router.delete("/cache", dependencies=[Depends(api_limit)])
async def invalidate_cache(req: CacheInvalidateRequest, service: TransformationService = Depends(get_service)):
    """Deletes the cached result for a source + persona so the next request recomputes it."""
    ok = await service.invalidate(_source_of(req), req.persona, req.options)
    return {"success": ok}


# -------------------------
# Error rendering
# -------------------------

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    d = exc.decision
    return JSONResponse(
        status_code=429,
        content={"success": False, "error": exc.message, "retryAfter": d.retry_after},
        headers=d.headers(),
    )


async def transform_error_handler(request: Request, exc: TransformError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "errorCode": exc.code.value, "timestamp": _now_iso()},
    )


async def job_pending_handler(request: Request, exc: JobPending):
    content = {"success": False, "job_id": exc.job_id, "status": "queued", "progress": 0,
               "error": "Transformation already in progress. Poll /jobs/{job_id} for the result."}
    if exc.job is not None:
        content.update(status=exc.job.status.value, progress=exc.job.progress)
    return JSONResponse(status_code=202, content=content)


# -------------------------
# App setup
# -------------------------

def create_app(
    config: Optional[Settings] = None,
    *,
    store: Optional[KeyValueStore] = None,
    transformer: Optional[ContentTransformer] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Wire the store, job manager, result cache, limiters and service into a FastAPI app.
    Backends are injected here once; nothing below reaches for a process-wide singleton."""
    config = config or default_settings
    logging.basicConfig(level=config.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")

    store = store or build_store(config.redis_url, disabled=config.redis_disabled, connect_timeout=config.redis_connect_timeout)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await store.close()

    app = FastAPI(title="PagePersona", lifespan=lifespan)
    app.add_middleware(RequestTimingMiddleware)

    jobs = JobManager(store, job_ttl_seconds=config.job_ttl_seconds, lock_ttl_seconds=config.job_lock_ttl_seconds)
    cache = ResultCache(store, ttl_seconds=config.cache_ttl_seconds, text_sample_chars=config.text_cache_sample_chars)
    limit_store = FallbackRateLimitStore(SharedRateLimitStore(store))
    resolver = build_tier_resolver(header_enabled=config.tier_header_enabled)

    app.state.config = config
    app.state.store = store
    app.state.transform_limiter = create_tiered_limiter("transform", resolver, store=limit_store, clock=clock)
    app.state.api_limiter = create_tiered_limiter("api", resolver, store=limit_store, clock=clock)
    app.state.service = TransformationService(
        store=store,
        jobs=jobs,
        cache=cache,
        transformer=transformer or ContentTransformer(config),
        config=config,
    )

    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(TransformError, transform_error_handler)
    app.add_exception_handler(JobPending, job_pending_handler)
    app.include_router(router)
    return app


app = create_app()
