from fastapi import Request, status
from fastapi.responses import JSONResponse


class RateLimitedError(Exception):
    """유저 자체 사용량 제한 초과: 네트워크 호출 전에 거절"""

    def __init__(self, reason: str, retry_after: int):
        self.reason = reason            # "minute" | "hour" | "tokens"
        self.retry_after = retry_after  # 초
        super().__init__(f"rate limited ({reason}), retry after {retry_after}s")

    @property
    def retry_after_label(self) -> str:
        return f"{self.retry_after}s"


RATE_LIMIT_MESSAGES = {
    "minute": "You're sending messages too quickly. Please wait a moment and try again.",
    "hour": "You've reached the hourly message limit. Please try again later.",
    "tokens": "You've reached today's usage limit for the assistant. Please try again tomorrow.",
}


async def rate_limited_exception_handler(request: Request, exc: RateLimitedError) -> JSONResponse:
    """RateLimitedError → 429 (프론트엔드는 body의 retryAfter 문자열을 읽음)"""
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "message": RATE_LIMIT_MESSAGES.get(exc.reason, RATE_LIMIT_MESSAGES["minute"]),
            "reason": exc.reason,
            "retryAfter": exc.retry_after_label,
        },
        headers={"Retry-After": str(exc.retry_after)},
    )
