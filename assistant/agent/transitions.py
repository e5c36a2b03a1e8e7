"""
상태 전이 표: (현재 상태, 결과) → 다음 상태

    rate_limit_check ──admitted──→ cache_lookup ──miss──→ budget_preflight
          │rejected                    │hit                 ├─ok──────────────→ primary_attempt
          ↓                            ↓                    ├─no_credential───→ secondary_attempt
         END                        respond                 └─over_budget─────→ rule_based_fallback

    primary_attempt ─failed→ degraded_attempt ─failed→ emergency_attempt ─failed→ secondary_attempt
    secondary_attempt ─failed/skipped→ rule_based_fallback ─answered→ respond ─done→ END
    (모든 *_attempt 의 success → respond)

키 교체 후 재시도(RotateAndRetry)는 각 attempt 상태 안에서 조각 단위로 일어나고
이 표에는 나타나지 않습니다.
"""
from langgraph.graph import END

RATE_LIMIT_CHECK = "rate_limit_check"
CACHE_LOOKUP = "cache_lookup"
BUDGET_PREFLIGHT = "budget_preflight"
PRIMARY_ATTEMPT = "primary_attempt"
DEGRADED_ATTEMPT = "degraded_attempt"
EMERGENCY_ATTEMPT = "emergency_attempt"
SECONDARY_ATTEMPT = "secondary_attempt"
RULE_BASED_FALLBACK = "rule_based_fallback"
RESPOND = "respond"

TRANSITIONS: dict[tuple[str, str], str] = {
    (RATE_LIMIT_CHECK, "admitted"): CACHE_LOOKUP,
    (RATE_LIMIT_CHECK, "rejected"): END,

    (CACHE_LOOKUP, "hit"): RESPOND,
    (CACHE_LOOKUP, "miss"): BUDGET_PREFLIGHT,

    (BUDGET_PREFLIGHT, "ok"): PRIMARY_ATTEMPT,
    (BUDGET_PREFLIGHT, "no_credential"): SECONDARY_ATTEMPT,
    (BUDGET_PREFLIGHT, "over_budget"): RULE_BASED_FALLBACK,

    (PRIMARY_ATTEMPT, "success"): RESPOND,
    (PRIMARY_ATTEMPT, "failed"): DEGRADED_ATTEMPT,

    (DEGRADED_ATTEMPT, "success"): RESPOND,
    (DEGRADED_ATTEMPT, "failed"): EMERGENCY_ATTEMPT,

    (EMERGENCY_ATTEMPT, "success"): RESPOND,
    (EMERGENCY_ATTEMPT, "failed"): SECONDARY_ATTEMPT,

    (SECONDARY_ATTEMPT, "success"): RESPOND,
    (SECONDARY_ATTEMPT, "failed"): RULE_BASED_FALLBACK,
    (SECONDARY_ATTEMPT, "skipped"): RULE_BASED_FALLBACK,

    (RULE_BASED_FALLBACK, "answered"): RESPOND,

    (RESPOND, "done"): END,
}


def next_state(stage: str, outcome: str) -> str:
    """정의되지 않은 조합은 규칙 기반 응답으로: 어떤 경우에도 응답은 만들어짐"""
    if stage == RESPOND:
        return END
    if stage == RULE_BASED_FALLBACK:
        return RESPOND
    return TRANSITIONS.get((stage, outcome), RULE_BASED_FALLBACK)


def transition_router(state: dict) -> str:
    """LangGraph 조건부 엣지용: 노드가 남긴 stage/outcome으로 다음 노드 결정"""
    return next_state(state["stage"], state["outcome"])


def successors(stage: str) -> list[str]:
    """add_conditional_edges에 넘길 후보 목록"""
    targets = {target for (source, _), target in TRANSITIONS.items() if source == stage}
    if stage != RESPOND:
        targets.add(RULE_BASED_FALLBACK)
    targets.discard(stage)
    return sorted(targets)
