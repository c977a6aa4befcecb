#!/usr/bin/env python3
"""Print job/cache TTLs, text limits and tier quotas (from config). Run from repo root: python scripts/print_limits.py"""
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from pagepersona.core.config import settings
from pagepersona.guardrails.tiers import TIER_LIMITS


def main():
    """Print JOB_TTL_SECONDS, JOB_LOCK_TTL_SECONDS, CACHE_TTL_SECONDS, MAX_TEXT_CHARS and the tier table."""
    print("Job, cache & API limits")
    print("-----------------------")
    print(f"  JOB_TTL_SECONDS       = {settings.job_ttl_seconds} s (job record lifetime, refreshed on every update)")
    print(f"  JOB_LOCK_TTL_SECONDS  = {settings.job_lock_ttl_seconds} s (compute lock lifetime)")
    print(f"  CACHE_TTL_SECONDS     = {settings.cache_ttl_seconds} s (transformation result lifetime)")
    print(f"  MAX_TEXT_CHARS        = {settings.max_text_chars} (max pasted text length)")
    print(f"  Shared store          = {'disabled' if settings.redis_disabled else settings.redis_url}")
    print("")
    print("Rate limits (per client IP, endpoint class and tier)")
    for endpoint, row in TIER_LIMITS.items():
        for tier, limit in row.items():
            print(f"  {endpoint:<10} {tier.value:<8} = {limit.max_requests} requests / {limit.window_ms // 1000} s")
    print("")
    print("Env: JOB_TTL_SECONDS, JOB_LOCK_TTL_SECONDS, CACHE_TTL_SECONDS, MAX_TEXT_CHARS, REDIS_URL (see .env.example)")


if __name__ == "__main__":
    main()
