from fastapi import APIRouter, Depends

from agent.orchestrator import FallbackOrchestrator
from core.dependencies import get_orchestrator, get_profile_store
from core.logger import user_id_var
from core.security import get_current_user_id
from schemas.assistant import AssistantMessageRequest, AssistantMessageResponse
from schemas.profile import UserProfile
from service.profile_service import ProfileStore

router = APIRouter()


@router.post("/message", response_model=AssistantMessageResponse)
async def send_message(
    request: AssistantMessageRequest,
    user_id: str = Depends(get_current_user_id),
    orchestrator: FallbackOrchestrator = Depends(get_orchestrator),
    profiles: ProfileStore = Depends(get_profile_store),
):
    """
    전체 파이프라인 (FallbackOrchestrator 상태 머신):
    1. JWT 인증 → user_id
    2. 사용량 제한 (분 5회 / 시간 30회 / 일 10만 토큰) → 초과 시 429
    3. 캐시 확인 → 히트 시 즉시 반환
    4. 예산 사전 점검 → primary / degraded / emergency / 보조 제공자 순으로 시도
    5. 전부 실패하면 규칙 기반 응답
    6. 캐시 저장 + 사용량 기록
    """
    user_id_var.set(user_id)
    profile = await profiles.get(user_id)
    history = [item.model_dump() for item in request.conversation_history]
    payload = await orchestrator.handle(user_id, request.message, history, profile)
    return AssistantMessageResponse.from_payload(payload)


@router.post("/guest-message", response_model=AssistantMessageResponse)
async def send_guest_message(
    request: AssistantMessageRequest,
    orchestrator: FallbackOrchestrator = Depends(get_orchestrator),
):
    """비로그인 방문자: 사용량 제한 없음, 캐시는 guest 네임스페이스, 서비스 안내용 프롬프트"""
    user_id_var.set("guest")
    history = [item.model_dump() for item in request.conversation_history]
    payload = await orchestrator.handle(None, request.message, history, guest=True)
    return AssistantMessageResponse.from_payload(payload, is_guest=True)


@router.get("/profile", response_model=UserProfile)
async def get_profile(
    user_id: str = Depends(get_current_user_id),
    profiles: ProfileStore = Depends(get_profile_store),
):
    return await profiles.get(user_id)


@router.put("/profile", response_model=UserProfile)
async def update_profile(
    profile: UserProfile,
    user_id: str = Depends(get_current_user_id),
    profiles: ProfileStore = Depends(get_profile_store),
):
    """시스템 프롬프트에 들어갈 이름 / 생년월일 / 지병 / 알레르기"""
    return await profiles.upsert(user_id, profile)
