from pydantic import BaseModel


class UsageLimits(BaseModel):
    per_minute: int
    per_hour: int
    tokens_per_day: int


class UsageSummary(BaseModel):
    user_id: str
    requests_last_minute: int
    requests_last_hour: int
    tokens_last_day: int
    tokens_last_week: int
    limits: UsageLimits


class CredentialStatus(BaseModel):
    slot: int
    key: str                       # 마스킹된 키
    active: bool
    cooldown_remaining: float
    quota_exceeded: bool
    consecutive_errors: int
    window_tokens: int
    window_requests: int


class CacheStatus(BaseModel):
    entries: int
    max_entries: int
    ttl_seconds: float


class SweepResult(BaseModel):
    removed: int
