"""
Output Guard: 티어 응답 품질 검증

조각별 응답을 이어붙인 결과가 비었거나, 너무 짧거나, placeholder 문장뿐이면
그 티어는 실패로 보고 다음 티어로 내려갑니다. (사용자에게 돌려주지 않음)
"""
from service.provider_service import PLACEHOLDER_MARKERS

# 응답 최소 길이 (문자 수)
MIN_RESPONSE_LENGTH = 10


def strip_placeholders(text: str) -> str:
    for marker in PLACEHOLDER_MARKERS:
        text = text.replace(marker, "")
    return text.strip()


def is_adequate_response(text: str, min_length: int = MIN_RESPONSE_LENGTH) -> bool:
    if not text:
        return False
    return len(strip_placeholders(text)) >= min_length
