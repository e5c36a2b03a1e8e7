"""
Respond 노드: 모든 경로가 모이는 종착점

1. 캐시 히트면 저장된 응답에 from_cache 표시만 붙여 반환
2. 아니면 증상 분류(예약 제안 / 자가 관리 판단) + 주의 문구 추가
3. 응답 캐시 저장 (에러 / 쿼터 초과 / 폴백 / placeholder 섞인 응답은 캐시가 거절)
4. 토큰 사용량 기록: 요청 1건당 정확히 한 번 (요청 수는 허용 시점에 이미 반영, 캐시 히트는 토큰 0)
"""
from langchain_core.runnables import RunnableConfig

from agent.runtime import get_runtime
from agent.state import AssistantState
from agent.transitions import RESPOND
from core.logger import get_logger
from core.metrics import metrics_store
from service.triage_service import assess_self_care, self_care_note, should_suggest_appointment

logger = get_logger("respond")


def build_payload(state: AssistantState) -> dict:
    message = state["message"]
    text = state.get("response", "")

    if state.get("guest"):
        suggest, self_care_ok = False, True
    else:
        assessment = assess_self_care(message, state.get("profile"))
        suggest = should_suggest_appointment(
            message, text, assessment, responder_suggested=state.get("responder_suggested", False)
        )
        self_care_ok = assessment.appropriate
        text += self_care_note(message, assessment)

    return {
        "text": text,
        "suggest_appointment": suggest,
        "self_care_appropriate": self_care_ok,
        "from_cache": False,
        "using_fallback": state.get("using_fallback", False),
        "quota_exceeded": state.get("quota_exceeded", False),
        "retry_after": state.get("retry_after"),
        "resolved_by": state.get("resolved_by", "rule_based"),
    }


async def respond_node(state: AssistantState, config: RunnableConfig) -> dict:
    runtime = get_runtime(config)
    user_id = state.get("user_id")

    if state.get("from_cache"):
        payload = {**state["cached_payload"], "from_cache": True, "resolved_by": "cache"}
        await runtime.limiter.record(user_id, 0, 0)
    else:
        payload = build_payload(state)
        await runtime.cache.put(user_id, state["message"], payload)
        await runtime.limiter.record(user_id, state.get("input_tokens", 0), state.get("output_tokens", 0))

    metrics_store.record_resolution(payload["resolved_by"])
    logger.info(
        "assistant response ready",
        extra={"extra_data": {
            "user_id": user_id,
            "resolved_by": payload["resolved_by"],
            "failed_tiers": state.get("failed_tiers", []),
            "input_tokens": state.get("input_tokens", 0),
            "output_tokens": state.get("output_tokens", 0),
        }},
    )
    return {"stage": RESPOND, "outcome": "done", "payload": payload}
