"""
Assistant State: LangGraph 상태 정의

stage/outcome 한 쌍이 상태 머신의 현재 위치:
노드는 자기 이름(stage)과 결과(outcome)만 남기고,
다음 노드는 agent.transitions의 전이 표가 결정합니다.
"""
from typing import Optional, TypedDict

from schemas.profile import UserProfile
from service.conversation_service import ConversationTurn


class AssistantState(TypedDict, total=False):
    # ─── 요청 입력 ───
    user_id: Optional[str]           # None이면 게스트
    message: str                     # 사용자 원본 메시지
    history: list[ConversationTurn]  # 정규화된 대화 기록 (user 턴으로 시작)
    profile: UserProfile
    guest: bool

    # ─── 상태 머신 ───
    stage: str                       # 방금 실행된 상태
    outcome: str                     # 그 상태의 결과

    # ─── 사용량 제한 거절 ───
    rejection_reason: Optional[str]  # "minute" | "hour" | "tokens"
    retry_after: Optional[int]       # 초 (사용량 거절 / 예산 초과 공통)

    # ─── 사전 점검 ───
    prompt: str                      # 시스템 프롬프트 + 사용자 메시지 (필요하면 축소본)
    prompt_shortened: bool

    # ─── 응답 ───
    response: str
    resolved_by: str                 # cache | primary | degraded | emergency | secondary | rule_based
    responder_suggested: bool        # 규칙 기반 응답이 직접 예약을 권했는지
    from_cache: bool
    using_fallback: bool
    quota_exceeded: bool
    cached_payload: Optional[dict]
    failed_tiers: list[str]

    # ─── 토큰 사용량 (성공한 호출 누적) ───
    input_tokens: int
    output_tokens: int

    # ─── 최종 결과 ───
    payload: dict
