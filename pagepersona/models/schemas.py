from pydantic import BaseModel, Field, field_validator, model_validator
from typing import List, Optional, Dict, Any

from pagepersona.core.config import settings


def _check_text(v: str) -> str:
    if not v.strip():
        raise ValueError("text must not be blank")
    if len(v) > settings.max_text_chars:
        raise ValueError(f"text exceeds {settings.max_text_chars} characters")
    return v


class TransformRequest(BaseModel):
    """Request body for POST /transform. Why available: Carries the page URL, the persona id and optional transformation options."""

    url: str = Field(..., min_length=1, max_length=2048, description="Page to fetch and transform (http/https)")
    persona: str = Field(..., min_length=1, max_length=64)
    options: Optional[Dict[str, Any]] = Field(None, description="Extra options; part of the job fingerprint")


class TransformTextRequest(BaseModel):
    """Request body for POST /transform/text. Why available: Lets clients transform pasted text without fetching a page."""

    text: str = Field(..., min_length=1)
    persona: str = Field(..., min_length=1, max_length=64)
    options: Optional[Dict[str, Any]] = None

    @field_validator("text")
    @classmethod
    def text_within_limit(cls, v):
        return _check_text(v)


class AsyncTransformRequest(BaseModel):
    """Request body for POST /transform/async: exactly one of url or text."""

    url: Optional[str] = Field(None, max_length=2048)
    text: Optional[str] = None
    persona: str = Field(..., min_length=1, max_length=64)
    options: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def one_source(self):
        if bool(self.url) == bool(self.text):
            raise ValueError("provide exactly one of url or text")
        if self.text is not None:
            _check_text(self.text)
        return self


class CacheInvalidateRequest(AsyncTransformRequest):
    """Request body for DELETE /cache: the same source identity used to transform."""


class TransformResponse(BaseModel):
    """Response for transform endpoints. Why available: Standard shape so the UI can render the styled text and know whether it came from cache."""

    success: bool = True
    job_id: str
    cached: bool = False
    data: Dict[str, Any]


class JobStatusResponse(BaseModel):
    """Response for GET /jobs/{job_id} and POST /transform/async. Why available: Lets clients poll a background transformation until done or error."""

    job_id: str
    status: str
    stage: Optional[str] = None
    progress: int = 0
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class PersonaOut(BaseModel):
    id: str
    name: str
    description: str


class PersonasResponse(BaseModel):
    personas: List[PersonaOut]


class TierLimitOut(BaseModel):
    max_requests: int
    window_seconds: int


class LimitsResponse(BaseModel):
    """Response for GET /limits: TTLs, text limits and the tier quota table. Why available: Lets UI display limits before submitting."""

    job_ttl_seconds: int
    job_lock_ttl_seconds: int
    cache_ttl_seconds: int
    max_text_chars: int
    rate_limits: Dict[str, Dict[str, TierLimitOut]]
