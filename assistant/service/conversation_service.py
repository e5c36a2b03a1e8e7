from typing import Iterable, Literal, TypedDict


class ConversationTurn(TypedDict):
    role: Literal["user", "assistant"]
    text: str


def normalize_history(raw_history: Iterable[dict] | None) -> list[ConversationTurn]:
    """
    라우팅 계층이 넘긴 {sender, text} 기록 → 제공자에 보낼 대화 기록
    1. sender가 "user"면 user, 그 외는 전부 assistant
    2. 빈 텍스트 턴은 버림
    3. 기록은 반드시 user 턴으로 시작: 앞쪽의 assistant 턴은 전부 버림 (남는 게 없으면 빈 기록)
    """
    turns: list[ConversationTurn] = []
    for item in raw_history or []:
        text = str(item.get("text") or "").strip()
        if not text:
            continue
        role = "user" if item.get("sender") == "user" else "assistant"
        turns.append({"role": role, "text": text})

    while turns and turns[0]["role"] != "user":
        turns.pop(0)
    return turns


def recent_user_messages(history: list[ConversationTurn], limit: int = 3) -> list[str]:
    """최근 user 메시지 (소문자): 규칙 기반 응답의 문맥 판단용"""
    messages = [turn["text"].lower() for turn in history if turn["role"] == "user"]
    return messages[-limit:]


def last_assistant_message(history: list[ConversationTurn]) -> str:
    for turn in reversed(history):
        if turn["role"] == "assistant":
            return turn["text"]
    return ""
