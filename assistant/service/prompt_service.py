"""
시스템 프롬프트 생성 / 축소 서비스

프롬프트 구조:
    <역할 정의 문단>

    User information:
    - Name: ...
    - Medical conditions: ...

    Guidelines:
    1. ...

    User message: <사용자 메시지>

축소(shrink) 우선순위:
    1. 첫 문단(역할 정의)은 통째로 유지
    2. 공간이 남으면 중요한 사용자 속성(지병, 알레르기) 추가
    3. 공간이 남으면 가이드라인 앞 4개까지 추가
    4. 그래도 max_length를 넘으면 전부 버리고 최소 고정 지시문 반환
"""
import re
from datetime import date
from typing import Optional

from schemas.profile import UserProfile

USER_MESSAGE_DELIMITER = "\n\nUser message: "

MINIMAL_SYSTEM_PROMPT = (
    "You are HealthBot, a friendly AI health assistant. Give brief, general, "
    "safe guidance and recommend a healthcare professional for serious symptoms."
)

# 값이 이것들이면 "중요 속성"으로 보지 않음
_EMPTY_VALUES = {"", "none", "none provided", "unknown", "n/a"}
# 축소 시 살리는 속성 (우선순위 순)
_CRITICAL_ATTRIBUTES = ("Medical conditions", "Allergies")
MAX_GUIDELINES = 4

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_BULLET = re.compile(r"^\s*(\d+[.)]|[-*•])\s+")


def calculate_age(date_of_birth: date, today: Optional[date] = None) -> int:
    today = today or date.today()
    age = today.year - date_of_birth.year
    # 올해 생일이 아직 안 지났으면 -1
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def build_system_prompt(profile: Optional[UserProfile]) -> str:
    """로그인 사용자용 시스템 프롬프트"""
    profile = profile or UserProfile()
    age = calculate_age(profile.date_of_birth) if profile.date_of_birth else "Unknown"

    return f"""You are HealthBot, a conversational AI health assistant for SoulSpace Health. You answer a wide range of questions, with a focus on health topics.

User information:
- Name: {profile.name or 'Patient'}
- Age: {age}
- Medical conditions: {profile.chronic_conditions or 'None provided'}
- Allergies: {profile.allergies or 'None provided'}

Guidelines:
1. Be conversational, friendly and empathetic
2. Judge symptom severity carefully and say when professional care is needed
3. Offer evidence-based self-care advice first for non-urgent problems
4. Never give a definitive diagnosis
5. Keep answers short and easy to follow
6. Recommend an appointment only when the symptoms call for one
7. For chronic conditions, explain which changes deserve medical attention
8. If asked, explain that you are an AI assistant and not a medical professional"""


GUEST_SYSTEM_PROMPT = """You are SoulSpace Assistant, a conversational AI assistant for the SoulSpace Health platform. You explain SoulSpace's services and answer general health questions.

Guidelines:
1. Be conversational, friendly and empathetic
2. Explain SoulSpace features: appointment booking, health monitoring, AI assistance
3. Give general health information only, never specific medical recommendations
4. Suggest registering for a full account for personalized services
5. Keep answers short and easy to follow"""


def compose_prompt(system_prompt: str, message: str) -> str:
    if not system_prompt:
        return message
    return f"{system_prompt}{USER_MESSAGE_DELIMITER}{message}"


def split_prompt(prompt: str) -> tuple[Optional[str], str]:
    """(시스템 프롬프트, 사용자 메시지): 구분자가 없으면 시스템 프롬프트는 None"""
    if USER_MESSAGE_DELIMITER not in prompt:
        return None, prompt
    system_prompt, message = prompt.split(USER_MESSAGE_DELIMITER, 1)
    return system_prompt, message


def _section_lines(prompt: str, header: str) -> list[str]:
    for paragraph in _PARAGRAPH_BREAK.split(prompt):
        lines = paragraph.strip().splitlines()
        if lines and lines[0].strip() == header:
            return [line.strip() for line in lines[1:] if line.strip()]
    return []


def _critical_attributes(prompt: str) -> list[str]:
    found = []
    for line in _section_lines(prompt, "User information:"):
        label, _, value = _BULLET.sub("", line).partition(":")
        if label.strip() in _CRITICAL_ATTRIBUTES and value.strip().lower() not in _EMPTY_VALUES:
            found.append(f"- {label.strip()}: {value.strip()}")
    return found


def _guideline_bullets(prompt: str) -> list[str]:
    bullets = [line for line in _section_lines(prompt, "Guidelines:") if _BULLET.match(line)]
    return bullets[:MAX_GUIDELINES]


def _append_block(base: str, header: str, lines: list[str], max_length: int) -> str:
    """헤더 + 들어가는 만큼의 줄을 붙임 (한 줄도 안 들어가면 헤더도 생략)"""
    result = base
    opened = False
    for line in lines:
        addition = f"\n{line}" if opened else f"\n\n{header}\n{line}"
        if len(result) + len(addition) > max_length:
            break
        result += addition
        opened = True
    return result


def shrink_system_prompt(prompt: str, max_length: int) -> str:
    prompt = prompt.strip()
    if len(prompt) <= max_length:
        return prompt

    role = _PARAGRAPH_BREAK.split(prompt)[0].strip()
    if len(role) > max_length:
        return MINIMAL_SYSTEM_PROMPT

    result = _append_block(role, "User information:", _critical_attributes(prompt), max_length)
    result = _append_block(result, "Guidelines:", _guideline_bullets(prompt), max_length)
    return result


def shorten_prompt(prompt: str, system_length: int, message_length: int) -> str:
    """예산 초과 프롬프트를 대폭 줄인 버전: 시스템 프롬프트 축소 + 메시지 앞부분만"""
    system_prompt, message = split_prompt(prompt)
    short_message = message[:message_length]
    if system_prompt is None:
        return short_message
    return compose_prompt(shrink_system_prompt(system_prompt, system_length), short_message)


def emergency_prompt(message: str, message_length: int) -> str:
    """긴급 티어용 단발 프롬프트: 최소 지시문 + 잘린 메시지"""
    return compose_prompt(MINIMAL_SYSTEM_PROMPT, message.strip()[:message_length])
