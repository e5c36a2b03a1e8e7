from fastapi import APIRouter, Depends

from core.dependencies import get_credential_pool, get_rate_limiter, get_response_cache
from core.security import get_current_admin, get_current_user_id
from schemas.admin import CacheStatus, CredentialStatus, SweepResult, UsageSummary
from service.cache_service import ResponseCache
from service.credential_service import CredentialPool
from service.quota_service import RateLimiter

router = APIRouter()


@router.get("/usage", response_model=UsageSummary)
async def get_usage(
    user_id: str = Depends(get_current_user_id),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """내 사용량 (최근 1분 / 1시간 요청 수, 최근 1일 / 7일 토큰)"""
    return await limiter.usage_summary(user_id)


@router.get("/credentials", response_model=list[CredentialStatus])
async def list_credentials(
    admin_id: str = Depends(get_current_admin),
    pool: CredentialPool = Depends(get_credential_pool),
):
    await pool.reset_expired()
    return pool.snapshot()


@router.get("/cache", response_model=CacheStatus)
async def get_cache_status(
    admin_id: str = Depends(get_current_admin),
    cache: ResponseCache = Depends(get_response_cache),
):
    return CacheStatus(entries=len(cache), max_entries=cache.max_entries, ttl_seconds=cache.ttl_seconds)


@router.post("/cache/sweep", response_model=SweepResult)
async def sweep_cache(
    admin_id: str = Depends(get_current_admin),
    cache: ResponseCache = Depends(get_response_cache),
):
    return SweepResult(removed=await cache.sweep_expired())
