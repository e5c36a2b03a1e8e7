"""
pytest 공통 설정
"""
import asyncio
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from collections import deque
from dataclasses import dataclass

import pytest
from starlette.testclient import TestClient

from fastapi import FastAPI
from agent.orchestrator import FallbackOrchestrator
from agent.runtime import AssistantRuntime
from core.dependencies import (
    get_credential_pool,
    get_orchestrator,
    get_profile_store,
    get_rate_limiter,
    get_response_cache,
)
from core.exceptions import RateLimitedError, rate_limited_exception_handler
from core.metrics import metrics_store
from core.security import create_access_token
from router import assistant, admin
from service.cache_service import ResponseCache
from service.credential_service import CredentialPool
from service.profile_service import ProfileStore
from service.provider_service import DispatchOutcome, ModelTier, OutcomeKind, get_profile
from service.quota_service import RateLimiter

DEFAULT_ANSWER = "Please rest, drink water and see a doctor if your symptoms get worse."


# ===== 테스트 대역 =====

class ManualClock:
    """직접 시간을 움직이는 시계: 창 / 쿨다운 / TTL 테스트용"""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class SentCall:
    slot: int | None
    tier: str
    fragment: str
    history: list


class FakeDispatcher:
    """
    ProviderDispatcher 대역: 네트워크 없이 결과를 대본대로 돌려줌
    - script: 순서대로 소비할 결과 (DispatchOutcome 또는 (credential, tier, fragment) → DispatchOutcome 함수)
    - 대본이 떨어지면 default (결과 또는 같은 형태의 함수)
    - delay: 호출마다 실제로 기다리는 시간 (동시 요청이 제공자 호출 중에 서로 끼어들도록)
    """

    def __init__(self, script=None, default=None, delay: float = 0.0):
        self.script = deque(script or [])
        self.default = default or DispatchOutcome(OutcomeKind.SUCCESS, text=DEFAULT_ANSWER, input_tokens=40, output_tokens=20)
        self.calls: list[SentCall] = []
        self.delay = delay

    async def send(self, credential, tier, history, fragment, timeout=None):
        self.calls.append(SentCall(credential.index if credential else None, tier.name, fragment, list(history)))
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.script.popleft() if self.script else self.default
        return item(credential, tier, fragment) if callable(item) else item

    def tiers_called(self) -> list[str]:
        return [call.tier for call in self.calls]


class SleepRecorder:
    """asyncio.sleep 대역: 실제로 기다리지 않고 요청된 지연만 기록"""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_tier(name: str, chunk_size: int, output_budget: int, delay: float = 0.0,
              use_history: bool = True, api_key: str | None = None, profile: str = "gemini") -> ModelTier:
    return ModelTier(
        name=name,
        model=f"{name}-model",
        profile=get_profile(profile),
        base_url="https://provider.test",
        output_budget=output_budget,
        chunk_size=chunk_size,
        fragment_delay=delay,
        use_history=use_history,
        api_key=api_key,
    )


# ===== 픽스처 =====

@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def make_runtime(clock):
    """AssistantRuntime 팩토리: 공유 자원 전부 같은 수동 시계 사용"""

    def _make(dispatcher, keys=("key-primary-0001", "key-backup-0002"), secondary=False, **overrides):
        params = dict(
            limiter=RateLimiter(clock=clock),
            cache=ResponseCache(clock=clock),
            pool=CredentialPool(list(keys), clock=clock),
            dispatcher=dispatcher,
            primary=make_tier("primary", 2000, 800, delay=1.0),
            degraded=make_tier("degraded", 1200, 400, delay=2.0),
            emergency=make_tier("emergency", 300, 150, use_history=False),
            secondary=make_tier("secondary", 1200, 400, delay=3.0, api_key="hf-token", profile="openai") if secondary else None,
            sleep=SleepRecorder(),
        )
        params.update(overrides)
        return AssistantRuntime(**params)

    return _make


# ===== 테스트 전용 앱 (미들웨어 없이) =====
test_app = FastAPI()
test_app.include_router(assistant.router, prefix="/api/assistant", tags=["Assistant"])
test_app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])
test_app.add_exception_handler(RateLimitedError, rate_limited_exception_handler)


@test_app.get("/health")
async def health():
    return {"status": "ok"}


@test_app.get("/api/metrics")
async def metrics():
    return metrics_store.summary()


@pytest.fixture
def api_dispatcher():
    return FakeDispatcher()


@pytest.fixture
def api_runtime(make_runtime, api_dispatcher):
    return make_runtime(api_dispatcher)


@pytest.fixture
def client(api_runtime):
    """동기식 테스트 클라이언트: 공유 자원은 대역 런타임으로 교체"""
    profiles = ProfileStore()
    orchestrator = FallbackOrchestrator(api_runtime)

    test_app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    test_app.dependency_overrides[get_profile_store] = lambda: profiles
    test_app.dependency_overrides[get_rate_limiter] = lambda: api_runtime.limiter
    test_app.dependency_overrides[get_response_cache] = lambda: api_runtime.cache
    test_app.dependency_overrides[get_credential_pool] = lambda: api_runtime.pool

    with TestClient(test_app) as c:
        yield c

    test_app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """인증된 헤더: 라우팅 계층이 발급한 것과 같은 JWT 직접 생성"""
    token = create_access_token("user-1")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers():
    token = create_access_token("admin-1", role="admin")
    return {"Authorization": f"Bearer {token}"}
