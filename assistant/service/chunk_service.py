"""
메시지 청크 분할 서비스

제공자에 한 번에 보내기엔 너무 긴 프롬프트를 순서 있는 조각(fragment)으로 나눕니다.

규칙:
1. 전체 길이가 max_fragment_size 이하 → 조각 1개
2. "시스템 프롬프트 + User message:" 구조이고 사용자 메시지가 예산의 절반 이하
   → 시스템 프롬프트만 축소해서 조각 1개
3. 그 외 → 사용자 메시지를 문장 경계로 자르고, 한 문장이 예산을 넘으면 단어 경계로 자름
   - 0번 조각에만 축소된 시스템 프롬프트를 붙임
   - 이후 조각에는 "이어지는 메시지" 표시를 붙임

각 조각의 content는 원문에서 잘라낸 연속 구간이라 "".join(contents) == 원문 메시지.
접두어가 max_fragment_size보다 짧으면 각 조각의 text 길이는 max_fragment_size 이하.
(접두어 자체가 한도 이상인 아주 작은 한도에서는 접두어 + 본문 1자 이상이라 넘을 수 있음)
제공자는 분할 사실을 모르므로 조각은 반드시 순서대로, 대화 기록에 누적하며 보내야 합니다.
"""
import re
from dataclasses import dataclass, field

from service.prompt_service import USER_MESSAGE_DELIMITER, shrink_system_prompt, split_prompt

CONTINUATION_MARKER = "(Continuing previous message) "

_SENTENCE_END = re.compile(r"[.!?]+[\"')\]]*\s+")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class Fragment:
    content: str        # 원문 구간 (공백 포함 그대로)
    prefix: str = ""    # 축소된 시스템 프롬프트 또는 이어짐 표시

    @property
    def text(self) -> str:
        """제공자에 실제로 보내는 문자열"""
        return f"{self.prefix}{self.content.strip()}"


@dataclass
class ChunkPlan:
    fragments: list[Fragment] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.fragments)

    def __iter__(self):
        return iter(self.fragments)

    @property
    def contents(self) -> list[str]:
        return [fragment.content for fragment in self.fragments]

    def reconstruct(self) -> str:
        return "".join(self.contents)


def _budget(max_fragment_size: int, prefix: str) -> int:
    # 접두어를 뺀 나머지가 본문 자리 (최소 1자)
    return max(max_fragment_size - len(prefix), 1)


def _last_break(pattern: re.Pattern, window: str) -> int:
    last = 0
    for match in pattern.finditer(window):
        last = match.end()
    return last


def _split_text(text: str, first_budget: int, rest_budget: int) -> list[str]:
    pieces = []
    start = 0
    budget = first_budget

    while start < len(text):
        if start + budget >= len(text):
            pieces.append(text[start:])
            break
        window = text[start:start + budget]
        # 문장 경계 → 단어 경계 → 강제 절단 순
        cut = _last_break(_SENTENCE_END, window) or _last_break(_WHITESPACE, window) or budget
        pieces.append(text[start:start + cut])
        start += cut
        budget = rest_budget

    # 공백만 남은 조각은 앞 조각에 흡수 (보낼 내용이 없는 조각 방지)
    merged: list[str] = []
    carry = ""
    for piece in pieces:
        if not piece.strip():
            if merged:
                merged[-1] += piece
            else:
                carry += piece
            continue
        merged.append(carry + piece)
        carry = ""
    if carry:
        merged.append(carry)
    return merged or [text]


def plan_chunks(full_prompt: str, max_fragment_size: int) -> ChunkPlan:
    if max_fragment_size <= 0:
        raise ValueError("max_fragment_size must be positive")

    if len(full_prompt) <= max_fragment_size:
        return ChunkPlan([Fragment(content=full_prompt)])

    system_prompt, message = split_prompt(full_prompt)

    if system_prompt is None:
        first_prefix = ""
    else:
        if len(message) <= max_fragment_size // 2:
            # 메시지는 그대로 두고 시스템 프롬프트만 줄여서 한 조각으로 (줄인 결과가 한도 안에 들어갈 때만)
            room = max_fragment_size - len(message) - len(USER_MESSAGE_DELIMITER)
            prefix = shrink_system_prompt(system_prompt, max(room, 0)) + USER_MESSAGE_DELIMITER
            if len(prefix) + len(message) <= max_fragment_size:
                return ChunkPlan([Fragment(content=message, prefix=prefix)])
        first_prefix = shrink_system_prompt(system_prompt, max_fragment_size // 2) + USER_MESSAGE_DELIMITER

    pieces = _split_text(
        message,
        _budget(max_fragment_size, first_prefix),
        _budget(max_fragment_size, CONTINUATION_MARKER),
    )
    return ChunkPlan([
        Fragment(content=piece, prefix=first_prefix if index == 0 else CONTINUATION_MARKER)
        for index, piece in enumerate(pieces)
    ])
