from typing import Optional

from agent.graph import assistant_graph
from agent.runtime import AssistantRuntime
from agent.state import AssistantState
from core.exceptions import RateLimitedError
from schemas.profile import UserProfile
from service.conversation_service import normalize_history


class FallbackOrchestrator:
    """
    요청 1건을 상태 머신에 태워 응답 payload를 돌려줌

    - 사용량 제한 초과만 RateLimitedError로 올라감 (라우팅 계층이 429로 변환)
    - 그 외 모든 실패는 그래프 안에서 흡수되어 항상 텍스트 응답이 나옴
    """

    def __init__(self, runtime: AssistantRuntime, graph=None):
        self.runtime = runtime
        self.graph = graph or assistant_graph

    @staticmethod
    def initial_state(
        user_id: Optional[str],
        message: str,
        history: Optional[list[dict]] = None,
        profile: Optional[UserProfile] = None,
        guest: bool = False,
    ) -> AssistantState:
        return {
            "user_id": user_id,
            "message": message,
            "history": normalize_history(history),
            "profile": profile or UserProfile(),
            "guest": guest,
            "stage": "",
            "outcome": "",
            "rejection_reason": None,
            "retry_after": None,
            "prompt": "",
            "prompt_shortened": False,
            "response": "",
            "resolved_by": "",
            "responder_suggested": False,
            "from_cache": False,
            "using_fallback": False,
            "quota_exceeded": False,
            "cached_payload": None,
            "failed_tiers": [],
            "input_tokens": 0,
            "output_tokens": 0,
            "payload": {},
        }

    async def handle(
        self,
        user_id: Optional[str],
        message: str,
        history: Optional[list[dict]] = None,
        profile: Optional[UserProfile] = None,
        guest: bool = False,
    ) -> dict:
        state = self.initial_state(user_id, message, history, profile, guest)
        final_state = await self.graph.ainvoke(state, config={"configurable": {"runtime": self.runtime}})

        if final_state.get("rejection_reason"):
            raise RateLimitedError(final_state["rejection_reason"], final_state["retry_after"])
        return final_state["payload"]
