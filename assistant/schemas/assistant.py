from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# 프론트엔드는 camelCase (conversationHistory, suggestAppointment ...)
_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HistoryItem(BaseModel):
    model_config = _CAMEL

    sender: str                                    # "user" 또는 그 외(assistant)
    text: str = ""


class AssistantMessageRequest(BaseModel):
    model_config = _CAMEL

    message: str = Field(min_length=1, max_length=20_000)
    conversation_history: list[HistoryItem] = []   # 과거 대화 기록


class AssistantMessageResponse(BaseModel):
    model_config = _CAMEL

    text: str
    suggest_appointment: bool = False
    self_care_appropriate: bool = True
    from_cache: bool = False
    using_fallback: bool = False                   # 규칙 기반 응답 여부
    quota_exceeded: bool = False                   # 예산 초과로 호출 없이 응답
    retry_after: Optional[str] = None              # "30s"
    resolved_by: str                               # primary / degraded / emergency / secondary / cache / rule_based
    is_guest: bool = False

    @classmethod
    def from_payload(cls, payload: dict, is_guest: bool = False) -> "AssistantMessageResponse":
        retry_after = payload.get("retry_after")
        return cls(
            **{key: value for key, value in payload.items() if key != "retry_after"},
            retry_after=f"{retry_after}s" if retry_after is not None else None,
            is_guest=is_guest,
        )
