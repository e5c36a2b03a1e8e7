import asyncio
import hashlib
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from core.logger import get_logger
from service.provider_service import contains_placeholder

logger = get_logger("cache")

# 캐시 TTL (초): 1시간
CACHE_TTL = 3600
# 최대 보관 개수 / 초과 시 한 번에 지우는 개수 (가장 오래 전에 넣은 것부터)
MAX_ENTRIES = 1000
EVICT_COUNT = 200
# 백그라운드 만료 청소 주기 (초): 15분
SWEEP_INTERVAL = 900

# 이 플래그가 켜진 응답은 절대 캐시하지 않음 (저하된 응답을 정상 응답처럼 재사용 방지)
_UNCACHEABLE_FLAGS = ("is_error", "quota_exceeded", "using_fallback")


def normalize_message(message: str) -> str:
    return message.strip().lower()


def make_cache_key(user_id: Optional[str], message: str) -> str:
    message_hash = hashlib.md5(normalize_message(message).encode()).hexdigest()
    # 로그인 유저와 비로그인 방문자는 접두어로 구분 (id가 "guest"인 유저와 섞이지 않음)
    namespace = f"user:{user_id}" if user_id else "guest"
    return f"cache:{namespace}:{message_hash}"


def is_cacheable(payload: dict) -> bool:
    if any(payload.get(flag) for flag in _UNCACHEABLE_FLAGS):
        return False
    # 일부 조각이 실패해 placeholder로 채워진 응답도 정상 응답으로 재사용하지 않음
    return not contains_placeholder(payload.get("text") or "")


@dataclass
class CacheEntry:
    payload: dict
    inserted_at: float


class ResponseCache:
    """
    (유저, 정규화된 메시지) → 응답 인메모리 캐시

    - TTL: get 시점에 만료 확인 후 지연 삭제 + 주기적 청소(sweep)로 선제 삭제
    - 용량: max_entries 초과 시 삽입 순서가 가장 오래된 evict_count개 삭제
    - 동시성: 모든 읽기/쓰기/삭제는 하나의 asyncio.Lock 아래에서 수행
    """

    def __init__(
        self,
        ttl_seconds: float = CACHE_TTL,
        max_entries: int = MAX_ENTRIES,
        evict_count: int = EVICT_COUNT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.evict_count = evict_count
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at > self.ttl_seconds

    async def get(self, user_id: Optional[str], message: str) -> dict | None:
        """
        캐시 조회
        Returns:
            캐시 히트: 저장된 응답 dict (복사본)
            캐시 미스 또는 만료: None
        """
        key = make_cache_key(user_id, message)
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry, self._clock()):
                del self._entries[key]
                return None
            return dict(entry.payload)

    async def put(self, user_id: Optional[str], message: str, payload: dict) -> bool:
        """응답 저장: 에러/쿼터 초과/폴백 응답이나 일부 조각이 실패한 응답이면 저장하지 않고 False"""
        if not is_cacheable(payload):
            return False

        key = make_cache_key(user_id, message)
        async with self._lock:
            # 재삽입은 가장 최근 삽입 위치로 이동
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(payload=dict(payload), inserted_at=self._clock())

            if len(self._entries) > self.max_entries:
                for _ in range(min(self.evict_count, len(self._entries))):
                    self._entries.popitem(last=False)
                logger.info(
                    "cache capacity exceeded, evicted oldest entries",
                    extra={"extra_data": {"evicted": self.evict_count, "size": len(self._entries)}},
                )
        return True

    async def sweep_expired(self) -> int:
        """만료 항목 일괄 삭제: 삭제한 개수 반환"""
        async with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.info("expired cache entries swept", extra={"extra_data": {"removed": len(expired)}})
        return len(expired)

    async def run_sweeper(self, interval: float = SWEEP_INTERVAL) -> None:
        """lifespan에서 백그라운드 태스크로 실행: 취소될 때까지 주기적으로 청소"""
        while True:
            await asyncio.sleep(interval)
            await self.sweep_expired()
