import logging
import json
import uuid
from datetime import datetime, timezone
from contextvars import ContextVar

from core.config import settings

# 요청 단위 문맥: 같은 요청(같은 Task) 안의 모든 로그에 자동으로 붙음
# request_id: 미들웨어가 설정 (라우팅 계층이 X-Request-ID를 넘기면 그 값을 이어서 사용)
# user_id: 어시스턴트 라우터가 인증 직후 설정
request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
user_id_var: ContextVar[str] = ContextVar("user_id", default="-")


class JsonFormatter(logging.Formatter):
    """
    한 줄 JSON 로그

    {"timestamp": "...", "level": "WARNING", "logger": "credentials",
     "message": "credential rotated", "request_id": "abc12345", "user_id": "42",
     "from_slot": 0, "to_slot": 1}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(),
            "user_id": user_id_var.get(),
        }

        # extra={"extra_data": {...}} 로 넘긴 구조화 필드 (tier, slot, retry_after ...)
        entry.update(getattr(record, "extra_data", None) or {})

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # dataclass / Enum / datetime 같은 값은 문자열로
        return json.dumps(entry, ensure_ascii=False, default=str)


def get_logger(name: str) -> logging.Logger:
    """
    모듈별 JSON 로거
    - 레벨은 settings.log_level (LOG_LEVEL 환경변수)
    - 루트 로거로 전파하지 않음 → uvicorn 기본 로그와 중복 출력 방지
    """
    logger = logging.getLogger(f"assistant.{name}")

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(settings.log_level.upper())
        logger.propagate = False

    return logger


def generate_request_id() -> str:
    return uuid.uuid4().hex[:8]
