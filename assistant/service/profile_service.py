import asyncio
from typing import Optional

from schemas.profile import UserProfile


class ProfileStore:
    """
    유저 프로필 조회 창구 (시스템 프롬프트 생성용)
    영속 저장소는 이 코어 밖에 있고, 같은 get / upsert 두 호출 뒤에 붙습니다.
    여기 구현은 프로세스 메모리에만 보관: 재시작하면 사라짐
    """

    def __init__(self):
        self._profiles: dict[str, UserProfile] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: Optional[str]) -> UserProfile:
        """프로필이 없으면 빈 프로필 (이름/나이 등은 프롬프트에서 기본값으로 채워짐)"""
        if not user_id:
            return UserProfile()
        async with self._lock:
            return self._profiles.get(user_id) or UserProfile()

    async def upsert(self, user_id: str, profile: UserProfile) -> UserProfile:
        async with self._lock:
            self._profiles[user_id] = profile
        return profile
