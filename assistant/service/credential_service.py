"""
자격증명(API 키) 풀 서비스

키마다 독립된 사용량 / 쿨다운 / 연속 에러 횟수를 관리하고
쿼터 에러가 나면 가장 덜 쓰인 정상 키로 교체(rotate)합니다.

교체 우선순위:
    (a) 이번 프로세스에서 한 번도 안 쓴 키 중 쿨다운이 아닌 것
    (b) 라운드로빈 순서상 다음 키 중 쿨다운/쿼터초과가 아닌 것
    (c) 모두 불가 → False (한 바퀴만 돌고 종료)

자체 제한(proactive throttle):
    60초 창 안에서 토큰/요청이 임계치를 넘으면 제공자 에러가 없어도 짧게 쿨다운.
    제공자의 하드 쿼터에 절대 닿지 않도록 일부러 보수적으로 잡은 값.
"""
import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from core.logger import get_logger

logger = get_logger("credentials")

WINDOW_SECONDS = 60
TOKEN_THRESHOLD = 5000
REQUEST_THRESHOLD = 5
PROACTIVE_COOLDOWN = 15.0
DEFAULT_RETRY_AFTER = 60.0

_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_retry_after(hint: Union[str, int, float, None], default: float = DEFAULT_RETRY_AFTER) -> float:
    """'30s', '1.5s', '500ms', '2m', '30', 30 → 초. 해석 불가면 default"""
    if hint is None or isinstance(hint, bool):
        return default
    if isinstance(hint, (int, float)):
        return float(hint) if hint > 0 else default

    match = _DURATION.match(str(hint))
    if not match:
        return default
    value = float(match.group(1)) * _UNIT_SECONDS[(match.group(2) or "s").lower()]
    return value if value > 0 else default


def mask_key(api_key: str) -> str:
    return f"{api_key[:4]}…{api_key[-4:]}" if len(api_key) > 8 else "****"


@dataclass
class SlotUsage:
    window_start: float
    input_tokens: int = 0
    output_tokens: int = 0
    requests: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class CredentialSlot:
    index: int
    api_key: str
    usage: SlotUsage
    cooldown_until: float = 0.0
    consecutive_errors: int = 0
    quota_exceeded: bool = False
    last_used: Optional[float] = None   # None = 이번 프로세스에서 미사용

    def in_cooldown(self, now: float) -> bool:
        return now < self.cooldown_until

    def usable(self, now: float) -> bool:
        return not self.in_cooldown(now) and not self.quota_exceeded


@dataclass
class CredentialPool:
    api_keys: list[str]
    window_seconds: float = WINDOW_SECONDS
    token_threshold: int = TOKEN_THRESHOLD
    request_threshold: int = REQUEST_THRESHOLD
    proactive_cooldown: float = PROACTIVE_COOLDOWN
    default_retry_after: float = DEFAULT_RETRY_AFTER
    clock: Callable[[], float] = time.monotonic
    slots: list[CredentialSlot] = field(init=False)
    active_index: int = field(init=False, default=0)

    def __post_init__(self):
        now = self.clock()
        self.slots = [
            CredentialSlot(index=i, api_key=key, usage=SlotUsage(window_start=now))
            for i, key in enumerate(self.api_keys)
        ]
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self.slots)

    # ─── 내부 헬퍼 (Lock 보유 상태에서만 호출) ───

    def _reset_expired(self, now: float) -> None:
        for slot in self.slots:
            if now - slot.usage.window_start > self.window_seconds:
                slot.usage = SlotUsage(window_start=now)
            if slot.quota_exceeded and not slot.in_cooldown(now):
                slot.quota_exceeded = False
                logger.info("credential reactivated", extra={"extra_data": {"slot": slot.index}})

    def _rotate(self, now: float) -> bool:
        if not self.slots:
            return False

        # (a) 미사용 + 쿨다운 아님
        for slot in self.slots:
            if slot.last_used is None and slot.usable(now) and slot.index != self.active_index:
                return self._switch_to(slot)

        # (b) 라운드로빈: 현재 키 다음부터 정확히 한 바퀴
        count = len(self.slots)
        for step in range(1, count + 1):
            slot = self.slots[(self.active_index + step) % count]
            if slot.usable(now):
                return self._switch_to(slot)

        # (c) 전부 사용 불가
        logger.warning("credential rotation failed, every slot is cooling down",
                       extra={"extra_data": {"slots": count}})
        return False

    def _switch_to(self, slot: CredentialSlot) -> bool:
        if slot.index != self.active_index:
            logger.info("credential rotated",
                        extra={"extra_data": {"from_slot": self.active_index, "to_slot": slot.index}})
        self.active_index = slot.index
        return True

    def _apply_cooldown(self, slot: CredentialSlot, retry_after_hint, now: float) -> float:
        cooldown = parse_retry_after(retry_after_hint, self.default_retry_after)
        slot.consecutive_errors += 1
        if slot.consecutive_errors > 1:
            cooldown *= slot.consecutive_errors
        slot.cooldown_until = now + cooldown
        slot.quota_exceeded = True
        slot.last_used = now

        logger.warning(
            "credential quota exceeded, cooling down",
            extra={"extra_data": {
                "slot": slot.index,
                "key": mask_key(slot.api_key),
                "cooldown_seconds": cooldown,
                "consecutive_errors": slot.consecutive_errors,
            }},
        )
        return cooldown

    # ─── 공개 API ───

    async def reset_expired(self) -> None:
        async with self._lock:
            self._reset_expired(self.clock())

    async def select_active(self) -> CredentialSlot | None:
        """현재 키가 쓸 수 있으면 그대로, 아니면 교체 시도: 전부 불가면 None"""
        async with self._lock:
            if not self.slots:
                return None
            now = self.clock()
            self._reset_expired(now)
            active = self.slots[self.active_index]
            if active.usable(now):
                return active
            if self._rotate(now):
                return self.slots[self.active_index]
            return None

    async def rotate(self) -> bool:
        async with self._lock:
            now = self.clock()
            self._reset_expired(now)
            return self._rotate(now)

    async def mark_exceeded(self, slot: CredentialSlot, retry_after_hint=None) -> float:
        """
        제공자 쿼터 에러 반영: 적용된 쿨다운(초) 반환
        연속 에러가 2회 이상이면 쿨다운 × 에러 횟수 (점증 백오프)
        """
        async with self._lock:
            return self._apply_cooldown(slot, retry_after_hint, self.clock())

    async def mark_exceeded_and_rotate(
        self, slot: CredentialSlot, retry_after_hint=None, rotate: bool = True,
    ) -> tuple[Optional[CredentialSlot], bool]:
        """
        키 에러 반영과 교체를 한 Lock 안에서 처리 (동시에 같은 키로 실패한 요청들이 서로 앞질러 교체하지 않도록)

        1. 이 키가 이미 쿨다운 중이면 다른 요청이 같은 에러를 먼저 반영한 것 → 백오프를 다시 올리지 않음
        2. 실패한 키가 아직 활성 키일 때만 교체
        3. 다른 요청이 이미 교체했고 그 키가 쓸 수 있으면 그 키를 그대로 돌려줌
        Returns:
            (재시도할 키 또는 None, 이번 호출이 교체했는지)
        """
        async with self._lock:
            now = self.clock()
            if not (slot.quota_exceeded and slot.in_cooldown(now)):
                self._apply_cooldown(slot, retry_after_hint, now)
            if not rotate:
                return None, False

            self._reset_expired(now)
            if self.active_index != slot.index:
                active = self.slots[self.active_index]
                if active.usable(now):
                    return active, False
            if self._rotate(now):
                return self.slots[self.active_index], True
            return None, False

    async def record_usage(self, slot: CredentialSlot, input_tokens: int, output_tokens: int) -> None:
        async with self._lock:
            now = self.clock()
            if now - slot.usage.window_start > self.window_seconds:
                slot.usage = SlotUsage(window_start=now)
            slot.usage.input_tokens += input_tokens
            slot.usage.output_tokens += output_tokens
            slot.usage.requests += 1
            slot.last_used = now

            throttled = (
                slot.usage.total_tokens > self.token_threshold
                or slot.usage.requests > self.request_threshold
            )
            if throttled:
                slot.cooldown_until = max(slot.cooldown_until, now + self.proactive_cooldown)

        if throttled:
            logger.info(
                "credential self-throttled",
                extra={"extra_data": {
                    "slot": slot.index,
                    "window_tokens": slot.usage.total_tokens,
                    "window_requests": slot.usage.requests,
                    "cooldown_seconds": self.proactive_cooldown,
                }},
            )

    async def record_success(self, slot: CredentialSlot) -> None:
        async with self._lock:
            slot.consecutive_errors = 0

    async def remaining_budget(self, slot: CredentialSlot) -> int:
        """현재 60초 창에서 자체 제한까지 남은 토큰 수"""
        async with self._lock:
            now = self.clock()
            if now - slot.usage.window_start > self.window_seconds:
                return self.token_threshold
            return max(0, self.token_threshold - slot.usage.total_tokens)

    async def seconds_until_window_reset(self, slot: CredentialSlot) -> int:
        async with self._lock:
            remaining = slot.usage.window_start + self.window_seconds - self.clock()
            return max(1, int(remaining + 0.999))

    async def seconds_until_available(self) -> int:
        """가장 빨리 풀리는 키까지 남은 시간 (모든 키가 쓸 수 없을 때 retry-after 안내용)"""
        async with self._lock:
            now = self.clock()
            if not self.slots:
                return int(self.default_retry_after)
            waits = [max(0.0, slot.cooldown_until - now) for slot in self.slots]
            return max(1, int(min(waits) + 0.999))

    def snapshot(self) -> list[dict]:
        """키 상태 조회 (admin용, 키는 마스킹)"""
        now = self.clock()
        return [
            {
                "slot": slot.index,
                "key": mask_key(slot.api_key),
                "active": slot.index == self.active_index,
                "cooldown_remaining": round(max(0.0, slot.cooldown_until - now), 1),
                "quota_exceeded": slot.quota_exceeded,
                "consecutive_errors": slot.consecutive_errors,
                "window_tokens": slot.usage.total_tokens,
                "window_requests": slot.usage.requests,
            }
            for slot in self.slots
        ]
