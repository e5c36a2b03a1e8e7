from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path

class Settings(BaseSettings):
    # 로그 레벨 (DEBUG / INFO / WARNING ...)
    log_level: str = "INFO"

    # JWT 설정 (라우팅 계층이 발급한 토큰 검증용)
    jwt_secret: str = "dev-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60

    # Gemini: 여러 키를 콤마로 구분해서 등록 (키마다 독립된 쿼터)
    gemini_api_keys: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com"

    # 모델 티어 (성능 높은 순)
    model_primary: str = "gemini-1.5-pro"
    model_degraded: str = "gemini-1.5-flash"
    model_emergency: str = "gemini-1.5-flash-8b"

    # 보조 추론 제공자 (openai 호환 또는 ollama): 자격증명이 없으면 건너뜀
    secondary_provider: str = "openai"
    secondary_base_url: str = "https://api-inference.huggingface.co/v1"
    secondary_api_key: str = ""
    secondary_model: str = "mistralai/Mistral-7B-Instruct-v0.3"

    # 유저별 사용량 제한
    rate_limit_per_minute: int = 5
    rate_limit_per_hour: int = 30
    rate_limit_tokens_per_day: int = 100_000

    # 응답 캐시
    cache_ttl_seconds: int = 3600
    cache_max_entries: int = 1000
    cache_evict_count: int = 200
    cache_sweep_interval_seconds: int = 900

    # 자격증명 풀: 제공자 하드 쿼터보다 훨씬 낮게 잡은 자체 제한
    credential_window_seconds: int = 60
    credential_token_threshold: int = 5000
    credential_request_threshold: int = 5
    credential_proactive_cooldown_seconds: float = 15.0
    credential_default_retry_after: float = 60.0

    # 제공자 호출
    provider_timeout_seconds: float = 10.0
    min_response_length: int = 10

    # 예산 사전 점검 (토큰 추정치 기준)
    max_prompt_tokens: int = 4000
    short_system_prompt_length: int = 600
    short_message_length: int = 1000

    # 티어별 청크 크기(문자) / 출력 예산(토큰) / 조각 간 지연(초)
    primary_chunk_size: int = 2000
    primary_output_tokens: int = 800
    primary_fragment_delay: float = 1.0
    degraded_chunk_size: int = 1200
    degraded_output_tokens: int = 400
    degraded_fragment_delay: float = 2.0
    emergency_message_length: int = 300
    emergency_output_tokens: int = 150
    secondary_chunk_size: int = 1200
    secondary_output_tokens: int = 400
    secondary_fragment_delay: float = 3.0

    model_config = SettingsConfigDict(
        # config.py -> core -> assistant -> 프로젝트 루트 아래의 .env 찾기
        env_file=Path(__file__).parent.parent.parent / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,     # 환경변수 대소문자 무시
        protected_namespaces=(),  # 'model_' 접두사 경고 무시
    )

    @property
    def gemini_key_list(self) -> list[str]:
        return [key.strip() for key in self.gemini_api_keys.split(",") if key.strip()]

    @property
    def secondary_enabled(self) -> bool:
        # ollama는 로컬 서버라 키 대신 URL이 곧 자격증명
        if self.secondary_provider == "ollama":
            return bool(self.secondary_base_url)
        return bool(self.secondary_api_key)


# 싱글톤 인스턴스: 앱 어디서든 import해서 사용
settings = Settings()
