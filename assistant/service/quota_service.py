import asyncio
import math
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

from core.logger import get_logger

logger = get_logger("quota")

# 유저별 기본 제한
MAX_REQUESTS_PER_MINUTE = 5
MAX_REQUESTS_PER_HOUR = 30
MAX_TOKENS_PER_DAY = 100_000

MINUTE = 60
HOUR = 3600
DAY = 86400
WEEK = 7 * DAY


@dataclass
class TokenEvent:
    timestamp: float
    input_tokens: int
    output_tokens: int

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class UserUsageRecord:
    """
    유저 1명의 사용 기록 (첫 요청 때 생성, 프로세스 수명 동안 유지)
    - requests: 요청 시각 (조회 때마다 최근 1시간만 남김)
    - token_events: 토큰 사용 기록 (최근 7일만 남김)
    """
    requests: deque = field(default_factory=deque)
    token_events: deque = field(default_factory=deque)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def prune(self, now: float) -> None:
        while self.requests and now - self.requests[0] >= HOUR:
            self.requests.popleft()
        while self.token_events and now - self.token_events[0].timestamp >= WEEK:
            self.token_events.popleft()


@dataclass(frozen=True)
class Admission:
    admitted: bool
    reason: Optional[str] = None     # "minute" | "hour" | "tokens"
    retry_after: int = 0             # 초

    @property
    def retry_after_label(self) -> str:
        return f"{self.retry_after}s"


ADMIT = Admission(admitted=True)


class RateLimiter:
    """
    유저별 슬라이딩 윈도우 사용량 제한 (분/시간 요청 수, 일일 토큰 수)

    - check_and_admit: 허용하는 순간 같은 Lock 안에서 요청 시각을 예약 (동시에 들어온 요청도 정확히 한도까지만 허용)
    - record: 완료된 요청 1건마다 정확히 한 번 호출, 토큰 사용량만 추가 (캐시 히트는 토큰 0)
    - 유저 기록마다 개별 Lock → 전역 Lock 없이 지연 정리(prune)
    """

    def __init__(
        self,
        per_minute: int = MAX_REQUESTS_PER_MINUTE,
        per_hour: int = MAX_REQUESTS_PER_HOUR,
        tokens_per_day: int = MAX_TOKENS_PER_DAY,
        clock: Callable[[], float] = time.time,
    ):
        self.per_minute = per_minute
        self.per_hour = per_hour
        self.tokens_per_day = tokens_per_day
        self._clock = clock
        self._records: dict[str, UserUsageRecord] = {}

    def _record_for(self, user_id: str) -> UserUsageRecord:
        # setdefault는 await 없이 끝나므로 이벤트 루프 안에서 원자적
        return self._records.setdefault(user_id, UserUsageRecord())

    @staticmethod
    def _retry_after(oldest: float, window: int, now: float) -> int:
        return max(1, math.ceil(oldest + window - now))

    async def check_and_admit(self, user_id: Optional[str]) -> Admission:
        """
        요청 허용 여부 판단
        Returns:
            ADMIT 또는 Admission(admitted=False, reason, retry_after)
        """
        # 비로그인(게스트) 경로는 이 코어 밖에서 관리
        if not user_id:
            return ADMIT

        record = self._record_for(user_id)
        async with record.lock:
            now = self._clock()
            record.prune(now)

            last_minute = [ts for ts in record.requests if now - ts < MINUTE]
            if len(last_minute) >= self.per_minute:
                admission = Admission(False, "minute", self._retry_after(last_minute[0], MINUTE, now))
            elif len(record.requests) >= self.per_hour:
                admission = Admission(False, "hour", self._retry_after(record.requests[0], HOUR, now))
            else:
                last_day = [event for event in record.token_events if now - event.timestamp < DAY]
                used = sum(event.total for event in last_day)
                if used >= self.tokens_per_day:
                    admission = Admission(False, "tokens", self._retry_after(last_day[0].timestamp, DAY, now))
                else:
                    record.requests.append(now)
                    return ADMIT

        logger.warning(
            "request rejected by rate limiter",
            extra={"extra_data": {
                "user_id": user_id,
                "reason": admission.reason,
                "retry_after": admission.retry_after,
            }},
        )
        return admission

    async def record(self, user_id: Optional[str], input_tokens: int, output_tokens: int) -> None:
        """완료된 요청 1건의 토큰 사용량 기록 (요청 시각은 check_and_admit에서 이미 예약됨)"""
        if not user_id:
            return

        record = self._record_for(user_id)
        async with record.lock:
            now = self._clock()
            record.prune(now)
            record.token_events.append(TokenEvent(now, input_tokens, output_tokens))

    async def usage_summary(self, user_id: str) -> dict:
        """
        유저별 사용량 요약 (admin 대시보드용)
        Returns:
            {"user_id": ..., "requests_last_minute": 2, "requests_last_hour": 7,
             "tokens_last_day": 1234, "tokens_last_week": 5678, "limits": {...}}
        """
        record = self._record_for(user_id)
        async with record.lock:
            now = self._clock()
            record.prune(now)
            return {
                "user_id": user_id,
                "requests_last_minute": sum(1 for ts in record.requests if now - ts < MINUTE),
                "requests_last_hour": len(record.requests),
                "tokens_last_day": sum(e.total for e in record.token_events if now - e.timestamp < DAY),
                "tokens_last_week": sum(e.total for e in record.token_events),
                "limits": {
                    "per_minute": self.per_minute,
                    "per_hour": self.per_hour,
                    "tokens_per_day": self.tokens_per_day,
                },
            }
