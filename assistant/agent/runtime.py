"""
그래프 실행에 필요한 공유 자원 묶음

lifespan에서 한 번 만들어 FallbackOrchestrator에 넘기고,
노드는 config["configurable"]["runtime"]으로 꺼내 씁니다. (전역 싱글톤 접근 없음)
"""
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from langchain_core.runnables import RunnableConfig

from core.config import Settings
from service.cache_service import ResponseCache
from service.credential_service import CredentialPool
from service.provider_service import ModelTier, ProviderDispatcher, get_profile
from service.quota_service import RateLimiter


@dataclass
class AssistantRuntime:
    limiter: RateLimiter
    cache: ResponseCache
    pool: CredentialPool
    dispatcher: ProviderDispatcher
    primary: ModelTier
    degraded: ModelTier
    emergency: ModelTier
    secondary: Optional[ModelTier] = None     # 자격증명이 없으면 None → 건너뜀

    # 사전 점검
    max_prompt_tokens: int = 4000
    short_system_prompt_length: int = 600
    short_message_length: int = 1000
    emergency_message_length: int = 300
    min_response_length: int = 10

    # 조각 간 지연: 테스트에서는 즉시 반환하는 함수로 교체
    sleep: Callable[[float], Awaitable] = asyncio.sleep


def get_runtime(config: RunnableConfig) -> AssistantRuntime:
    return config["configurable"]["runtime"]


def build_tiers(settings: Settings) -> dict[str, Optional[ModelTier]]:
    """설정값 → 티어 4개 (primary / degraded / emergency / secondary)"""
    gemini = get_profile("gemini")
    tiers = {
        "primary": ModelTier(
            name="primary",
            model=settings.model_primary,
            profile=gemini,
            base_url=settings.gemini_base_url,
            output_budget=settings.primary_output_tokens,
            chunk_size=settings.primary_chunk_size,
            fragment_delay=settings.primary_fragment_delay,
        ),
        "degraded": ModelTier(
            name="degraded",
            model=settings.model_degraded,
            profile=gemini,
            base_url=settings.gemini_base_url,
            output_budget=settings.degraded_output_tokens,
            chunk_size=settings.degraded_chunk_size,
            fragment_delay=settings.degraded_fragment_delay,
        ),
        # 단발 호출: 대화 기록 없이 잘린 메시지만
        "emergency": ModelTier(
            name="emergency",
            model=settings.model_emergency,
            profile=gemini,
            base_url=settings.gemini_base_url,
            output_budget=settings.emergency_output_tokens,
            chunk_size=settings.emergency_message_length,
            use_history=False,
        ),
        "secondary": None,
    }
    if settings.secondary_enabled:
        tiers["secondary"] = ModelTier(
            name="secondary",
            model=settings.secondary_model,
            profile=get_profile(settings.secondary_provider),
            base_url=settings.secondary_base_url,
            output_budget=settings.secondary_output_tokens,
            chunk_size=settings.secondary_chunk_size,
            fragment_delay=settings.secondary_fragment_delay,
            api_key=settings.secondary_api_key or None,
        )
    return tiers
