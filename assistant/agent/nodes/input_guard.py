"""
Input Guard 노드: 네트워크 호출 전에 끝낼 수 있는 요청을 걸러냄

1. rate_limit_node: 유저별 사용량 제한 초과 → 거절 (이후 어떤 호출도 없음), 허용이면 요청 1건 예약
2. cache_lookup_node: 같은 유저의 같은 질문 → 캐시된 응답 즉시 반환
"""
from langchain_core.runnables import RunnableConfig

from agent.runtime import get_runtime
from agent.state import AssistantState
from agent.transitions import CACHE_LOOKUP, RATE_LIMIT_CHECK
from core.metrics import metrics_store


async def rate_limit_node(state: AssistantState, config: RunnableConfig) -> dict:
    runtime = get_runtime(config)
    admission = await runtime.limiter.check_and_admit(state.get("user_id"))

    if not admission.admitted:
        metrics_store.record_rejection(admission.reason)
        return {
            "stage": RATE_LIMIT_CHECK,
            "outcome": "rejected",
            "rejection_reason": admission.reason,
            "retry_after": admission.retry_after,
        }
    return {"stage": RATE_LIMIT_CHECK, "outcome": "admitted"}


async def cache_lookup_node(state: AssistantState, config: RunnableConfig) -> dict:
    runtime = get_runtime(config)
    cached = await runtime.cache.get(state.get("user_id"), state["message"])

    if cached is None:
        return {"stage": CACHE_LOOKUP, "outcome": "miss"}
    return {
        "stage": CACHE_LOOKUP,
        "outcome": "hit",
        "cached_payload": cached,
        "response": cached.get("text", ""),
        "from_cache": True,
        "resolved_by": "cache",
    }
