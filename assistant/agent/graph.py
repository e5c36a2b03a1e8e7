"""
LangGraph 메인 그래프: 응답 생성 상태 머신

그래프 흐름:
  START → rate_limit_check ──rejected──→ END
                └──admitted──→ cache_lookup ──hit──→ respond → END
                                    └──miss──→ budget_preflight
                                                ├── primary_attempt → degraded_attempt → emergency_attempt
                                                │         (각 단계 success → respond)       ↓
                                                ├── no_credential ──────────────→ secondary_attempt
                                                └── over_budget ──→ rule_based_fallback ←──┘
                                                                          ↓
                                                                       respond → END

엣지는 전부 agent.transitions의 전이 표 하나로 결정됩니다.
"""
from langgraph.graph import StateGraph, START

from agent.state import AssistantState
from agent.nodes.input_guard import rate_limit_node, cache_lookup_node
from agent.nodes.preflight_node import budget_preflight_node
from agent.nodes.llm_node import (
    primary_attempt_node,
    degraded_attempt_node,
    emergency_attempt_node,
    secondary_attempt_node,
)
from agent.nodes.fallback_node import rule_based_fallback_node
from agent.nodes.respond_node import respond_node
from agent.transitions import (
    RATE_LIMIT_CHECK,
    CACHE_LOOKUP,
    BUDGET_PREFLIGHT,
    PRIMARY_ATTEMPT,
    DEGRADED_ATTEMPT,
    EMERGENCY_ATTEMPT,
    SECONDARY_ATTEMPT,
    RULE_BASED_FALLBACK,
    RESPOND,
    transition_router,
    successors,
)

NODES = {
    RATE_LIMIT_CHECK: rate_limit_node,
    CACHE_LOOKUP: cache_lookup_node,
    BUDGET_PREFLIGHT: budget_preflight_node,
    PRIMARY_ATTEMPT: primary_attempt_node,
    DEGRADED_ATTEMPT: degraded_attempt_node,
    EMERGENCY_ATTEMPT: emergency_attempt_node,
    SECONDARY_ATTEMPT: secondary_attempt_node,
    RULE_BASED_FALLBACK: rule_based_fallback_node,
    RESPOND: respond_node,
}


def create_graph():
    graph = StateGraph(AssistantState)

    # ═══ 노드 등록 ═══
    for name, node in NODES.items():
        graph.add_node(name, node)

    # ═══ 엣지 연결 ═══
    graph.add_edge(START, RATE_LIMIT_CHECK)
    for name in NODES:
        graph.add_conditional_edges(name, transition_router, successors(name))

    return graph.compile()


# ── 싱글톤 인스턴스 (상태 없는 그래프 정의: 공유 자원은 실행 시 config로 주입) ──
assistant_graph = create_graph()
