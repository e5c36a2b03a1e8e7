"""
토큰 예산 추정 서비스

실제 토크나이저 없이 단어/구두점/숫자 개수로 토큰 수를 근사합니다.
과금 정확도가 아니라 사전 차단(preflight)용이므로 항상 넉넉하게(과대) 추정합니다.

    tokens ≈ ceil(0.75 × 단어 수 + 구두점 수 + 숫자 길이 / 2.5 + 5)
    - 비어있지 않으면 최소 3
    - 템플릿 시스템 프롬프트 구조("Guidelines:" 등)가 있으면 × 1.2
"""
import math
import re

MIN_TOKENS = 3
BASE_OVERHEAD = 5
STRUCTURE_MULTIPLIER = 1.2

# 시스템 프롬프트 템플릿이 섞여 있다는 신호
STRUCTURE_MARKERS = ("Guidelines:", "User information:")

_PUNCTUATION = re.compile(r"[^\w\s]")
_DIGIT_RUN = re.compile(r"\d+")


def estimate_tokens(text: str) -> int:
    if not text:
        return 0

    word_count = len(text.split())
    punctuation_count = len(_PUNCTUATION.findall(text))
    digit_length = sum(len(run) for run in _DIGIT_RUN.findall(text))

    raw = 0.75 * word_count + punctuation_count + digit_length / 2.5 + BASE_OVERHEAD
    if any(marker in text for marker in STRUCTURE_MARKERS):
        raw *= STRUCTURE_MULTIPLIER

    return max(MIN_TOKENS, math.ceil(raw))
