"""
생성형 AI 제공자 호출 서비스

제공자별 요청/응답 형식은 ProviderProfile 변형(Gemini / OpenAI 호환 / Ollama)이 각자 책임지고,
어떤 변형을 쓸지는 모델 이름이 아니라 설정(ModelTier.profile)으로 명시합니다.

ProviderDispatcher.send()는 호출 1회의 결과를 분류해서 돌려줄 뿐
재시도 / 키 교체 / 티어 하강은 전부 오케스트레이터 몫입니다.

    SUCCESS         정상 응답
    QUOTA_EXCEEDED  429 / RESOURCE_EXHAUSTED (retry_after 힌트 포함)
    AUTH_ERROR      401 / 403 / 잘못된 키
    TRANSIENT       타임아웃, 네트워크 오류, 5xx, 깨진 응답
    EMPTY           응답이 없거나 너무 짧거나 내부 placeholder를 포함
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx

from core.logger import get_logger
from service.conversation_service import ConversationTurn
from service.credential_service import CredentialSlot
from service.token_service import estimate_tokens

logger = get_logger("provider")

DEFAULT_TIMEOUT = 10.0
MIN_RESPONSE_LENGTH = 10

# 조각 하나가 실패했을 때 그 자리를 채우는 문장: 최종 응답 판정에서 내용으로 치지 않음
FRAGMENT_PLACEHOLDER = "I wasn't able to process part of your message."
PLACEHOLDER_MARKERS = (FRAGMENT_PLACEHOLDER, "[[placeholder]]")


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    QUOTA_EXCEEDED = "quota_exceeded"
    AUTH_ERROR = "auth_error"
    TRANSIENT = "transient"
    EMPTY = "empty"


@dataclass(frozen=True)
class DispatchOutcome:
    kind: OutcomeKind
    text: str = ""
    retry_after: Any = None      # 제공자가 준 재시도 힌트 ("30s", 30, None ...)
    input_tokens: int = 0
    output_tokens: int = 0
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS


@dataclass(frozen=True)
class ProviderRequest:
    url: str
    headers: dict
    body: dict


class ProviderProfile:
    """제공자 1종의 요청 생성기 + 응답 추출기"""
    name = "base"

    def build_request(self, tier: "ModelTier", api_key: Optional[str],
                      history: list[ConversationTurn], text: str) -> ProviderRequest:
        raise NotImplementedError

    def extract(self, data: dict) -> tuple[str, int, int]:
        """(응답 텍스트, 입력 토큰, 출력 토큰): 토큰 정보가 없으면 0"""
        raise NotImplementedError

    def retry_hint(self, response: httpx.Response, data: Any) -> Any:
        return response.headers.get("retry-after")


class GeminiProfile(ProviderProfile):
    name = "gemini"

    def build_request(self, tier, api_key, history, text):
        # Gemini는 assistant 대신 model 역할을 씀
        contents = [
            {"role": "user" if turn["role"] == "user" else "model", "parts": [{"text": turn["text"]}]}
            for turn in history
        ]
        contents.append({"role": "user", "parts": [{"text": text}]})
        return ProviderRequest(
            url=f"{tier.base_url.rstrip('/')}/v1beta/models/{tier.model}:generateContent",
            headers={"x-goog-api-key": api_key or ""},
            body={
                "contents": contents,
                "generationConfig": {"temperature": 0.7, "maxOutputTokens": tier.output_budget},
            },
        )

    def extract(self, data):
        parts = data["candidates"][0]["content"]["parts"]
        text = "".join(part.get("text", "") for part in parts)
        usage = data.get("usageMetadata") or {}
        return text, usage.get("promptTokenCount", 0), usage.get("candidatesTokenCount", 0)

    def retry_hint(self, response, data):
        # google.rpc.RetryInfo → {"retryDelay": "30s"}
        details = (data or {}).get("error", {}).get("details", []) if isinstance(data, dict) else []
        for detail in details:
            if isinstance(detail, dict) and "RetryInfo" in detail.get("@type", ""):
                return detail.get("retryDelay")
        return super().retry_hint(response, data)


class OpenAIChatProfile(ProviderProfile):
    """OpenAI 호환 /chat/completions (HF Inference, vLLM, OpenRouter 등)"""
    name = "openai"

    def build_request(self, tier, api_key, history, text):
        messages = [{"role": turn["role"], "content": turn["text"]} for turn in history]
        messages.append({"role": "user", "content": text})
        return ProviderRequest(
            url=f"{tier.base_url.rstrip('/')}/chat/completions",
            headers={"Authorization": f"Bearer {api_key}"} if api_key else {},
            body={"model": tier.model, "messages": messages, "max_tokens": tier.output_budget, "temperature": 0.7},
        )

    def extract(self, data):
        text = data["choices"][0]["message"]["content"] or ""
        usage = data.get("usage") or {}
        return text, usage.get("prompt_tokens", 0), usage.get("completion_tokens", 0)


class OllamaChatProfile(ProviderProfile):
    name = "ollama"

    def build_request(self, tier, api_key, history, text):
        messages = [{"role": turn["role"], "content": turn["text"]} for turn in history]
        messages.append({"role": "user", "content": text})
        return ProviderRequest(
            url=f"{tier.base_url.rstrip('/')}/api/chat",
            headers={},
            body={
                "model": tier.model,
                "messages": messages,
                "stream": False,
                "options": {"num_predict": tier.output_budget},
            },
        )

    def extract(self, data):
        text = data["message"]["content"] or ""
        return text, data.get("prompt_eval_count", 0), data.get("eval_count", 0)


PROVIDER_PROFILES: dict[str, ProviderProfile] = {
    "gemini": GeminiProfile(),
    "openai": OpenAIChatProfile(),
    "ollama": OllamaChatProfile(),
}


def get_profile(kind: str) -> ProviderProfile:
    try:
        return PROVIDER_PROFILES[kind]
    except KeyError:
        raise ValueError(f"unknown provider profile: {kind}") from None


@dataclass(frozen=True)
class ModelTier:
    name: str                    # "primary" | "degraded" | "emergency" | "secondary"
    model: str
    profile: ProviderProfile
    base_url: str
    output_budget: int
    chunk_size: int
    fragment_delay: float = 0.0
    use_history: bool = True
    api_key: Optional[str] = field(default=None, repr=False)   # 풀 밖의 제공자(보조 제공자)용


def contains_placeholder(text: str) -> bool:
    return any(marker in text for marker in PLACEHOLDER_MARKERS)


class ProviderDispatcher:
    def __init__(self, client: httpx.AsyncClient, timeout: float = DEFAULT_TIMEOUT,
                 min_response_length: int = MIN_RESPONSE_LENGTH):
        self._client = client
        self.timeout = timeout
        self.min_response_length = min_response_length

    async def send(
        self,
        credential: Optional[CredentialSlot],
        tier: ModelTier,
        history: list[ConversationTurn],
        fragment: str,
        timeout: Optional[float] = None,
    ) -> DispatchOutcome:
        """
        제공자 호출 1회
        1. 프로필로 요청 생성 (credential이 없으면 tier.api_key 사용)
        2. 타이머와 경주: 시간 초과면 호출을 버리고 TRANSIENT
        3. 상태 코드 / 본문으로 결과 분류
        """
        api_key = credential.api_key if credential else tier.api_key
        request = tier.profile.build_request(tier, api_key, history if tier.use_history else [], fragment)

        try:
            response = await asyncio.wait_for(
                self._client.post(request.url, headers=request.headers, json=request.body),
                timeout=timeout or self.timeout,
            )
        except asyncio.TimeoutError:
            return self._transient(tier, "timeout")
        except httpx.HTTPError as exc:
            return self._transient(tier, f"{type(exc).__name__}: {exc}")

        return self._classify(tier, response, fragment)

    def _transient(self, tier: ModelTier, detail: str) -> DispatchOutcome:
        logger.warning("provider call failed", extra={"extra_data": {"tier": tier.name, "model": tier.model, "detail": detail}})
        return DispatchOutcome(OutcomeKind.TRANSIENT, detail=detail)

    def _classify(self, tier: ModelTier, response: httpx.Response, fragment: str) -> DispatchOutcome:
        try:
            data = response.json()
        except ValueError:
            data = None
        body_text = response.text

        failed = response.status_code >= 400
        if response.status_code == 429 or (failed and "RESOURCE_EXHAUSTED" in body_text):
            hint = tier.profile.retry_hint(response, data)
            logger.warning(
                "provider quota exceeded",
                extra={"extra_data": {"tier": tier.name, "model": tier.model, "retry_after": hint}},
            )
            return DispatchOutcome(OutcomeKind.QUOTA_EXCEEDED, retry_after=hint, detail=f"status {response.status_code}")

        if response.status_code in (401, 403) or (failed and "API key not valid" in body_text):
            logger.error("provider rejected credential", extra={"extra_data": {"tier": tier.name, "status": response.status_code}})
            return DispatchOutcome(OutcomeKind.AUTH_ERROR, detail=f"status {response.status_code}")

        if response.status_code >= 400:
            return self._transient(tier, f"status {response.status_code}")
        if data is None:
            return self._transient(tier, "malformed json")

        try:
            text, input_tokens, output_tokens = tier.profile.extract(data)
        except (KeyError, IndexError, TypeError, AttributeError):
            return self._transient(tier, "malformed response")

        text = (text or "").strip()
        if len(text) < self.min_response_length or contains_placeholder(text):
            logger.info("provider returned inadequate text", extra={"extra_data": {"tier": tier.name, "length": len(text)}})
            return DispatchOutcome(OutcomeKind.EMPTY, text=text, detail="inadequate response")

        return DispatchOutcome(
            OutcomeKind.SUCCESS,
            text=text,
            input_tokens=input_tokens or estimate_tokens(fragment),
            output_tokens=output_tokens or estimate_tokens(text),
        )
