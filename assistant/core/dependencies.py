import asyncio

import httpx

from agent.orchestrator import FallbackOrchestrator
from agent.runtime import AssistantRuntime, build_tiers
from core.config import settings
from core.logger import get_logger
from service.cache_service import ResponseCache
from service.credential_service import CredentialPool
from service.profile_service import ProfileStore
from service.provider_service import ProviderDispatcher
from service.quota_service import RateLimiter

logger = get_logger("dependencies")

# 공유 자원: lifespan에서 한 번 만들고 정리 (각자 자기 Lock을 가짐)
_http_client: httpx.AsyncClient | None = None
_limiter: RateLimiter | None = None
_cache: ResponseCache | None = None
_pool: CredentialPool | None = None
_profiles: ProfileStore | None = None
_orchestrator: FallbackOrchestrator | None = None
_sweeper_task: asyncio.Task | None = None

# === FastAPI Depends()용 함수 ===

def _require(resource, name: str):
    if resource is None:
        raise RuntimeError(f"{name}가 초기화되지 않았습니다. 서버 시작을 확인하세요.")
    return resource


async def get_orchestrator() -> FallbackOrchestrator:
    return _require(_orchestrator, "FallbackOrchestrator")


async def get_rate_limiter() -> RateLimiter:
    return _require(_limiter, "RateLimiter")


async def get_response_cache() -> ResponseCache:
    return _require(_cache, "ResponseCache")


async def get_credential_pool() -> CredentialPool:
    return _require(_pool, "CredentialPool")


async def get_profile_store() -> ProfileStore:
    return _require(_profiles, "ProfileStore")


# === 수명주기 관리 (main.py의 lifespan에서 호출) ===

async def init_connections():
    global _http_client, _limiter, _cache, _pool, _profiles, _orchestrator, _sweeper_task

    # 타임아웃 경주는 ProviderDispatcher가 하고, 클라이언트 타임아웃은 그보다 약간 길게
    _http_client = httpx.AsyncClient(timeout=settings.provider_timeout_seconds + 5.0)

    _limiter = RateLimiter(
        per_minute=settings.rate_limit_per_minute,
        per_hour=settings.rate_limit_per_hour,
        tokens_per_day=settings.rate_limit_tokens_per_day,
    )
    _cache = ResponseCache(
        ttl_seconds=settings.cache_ttl_seconds,
        max_entries=settings.cache_max_entries,
        evict_count=settings.cache_evict_count,
    )
    _pool = CredentialPool(
        api_keys=settings.gemini_key_list,
        window_seconds=settings.credential_window_seconds,
        token_threshold=settings.credential_token_threshold,
        request_threshold=settings.credential_request_threshold,
        proactive_cooldown=settings.credential_proactive_cooldown_seconds,
        default_retry_after=settings.credential_default_retry_after,
    )
    _profiles = ProfileStore()

    tiers = build_tiers(settings)
    runtime = AssistantRuntime(
        limiter=_limiter,
        cache=_cache,
        pool=_pool,
        dispatcher=ProviderDispatcher(
            _http_client,
            timeout=settings.provider_timeout_seconds,
            min_response_length=settings.min_response_length,
        ),
        primary=tiers["primary"],
        degraded=tiers["degraded"],
        emergency=tiers["emergency"],
        secondary=tiers["secondary"],
        max_prompt_tokens=settings.max_prompt_tokens,
        short_system_prompt_length=settings.short_system_prompt_length,
        short_message_length=settings.short_message_length,
        emergency_message_length=settings.emergency_message_length,
        min_response_length=settings.min_response_length,
    )
    _orchestrator = FallbackOrchestrator(runtime)

    # 만료 캐시 주기 청소
    _sweeper_task = asyncio.create_task(_cache.run_sweeper(settings.cache_sweep_interval_seconds))

    if not _pool.slots:
        logger.warning("GEMINI_API_KEYS is empty, pool tiers will be skipped")
    logger.info(
        "assistant runtime ready",
        extra={"extra_data": {"credentials": len(_pool), "secondary_enabled": tiers["secondary"] is not None}},
    )


async def close_connections():
    global _http_client, _limiter, _cache, _pool, _profiles, _orchestrator, _sweeper_task

    if _sweeper_task:
        _sweeper_task.cancel()
        try:
            await _sweeper_task
        except asyncio.CancelledError:
            pass
        _sweeper_task = None
    if _http_client:
        await _http_client.aclose()
        _http_client = None

    _limiter = _cache = _pool = _profiles = _orchestrator = None
    logger.info("assistant runtime closed")
