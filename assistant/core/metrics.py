import time
from collections import defaultdict, deque
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from core.logger import get_logger, generate_request_id, request_id_var

logger = get_logger("metrics")

# p95 계산에 쓰는 최근 응답 시간 개수
LATENCY_SAMPLE_SIZE = 500


class MetricsStore:
    """
    인메모리 메트릭 집계 (프로세스 재시작 시 초기화)

    - HTTP 계층: 요청 수, 상태코드 / 경로별 분포, 평균 · p95 응답 시간, 가장 느린 요청 Top 5
    - 상태 머신: 응답을 만든 경로, 실패한 티어, 키 교체 횟수, 사용량 제한 거절 사유
    """

    def __init__(self):
        self.total_requests = 0
        self.by_status = defaultdict(int)        # {200: 42, 429: 3}
        self.by_path = defaultdict(int)          # {"POST /api/assistant/message": 30}
        self.total_duration_ms = 0.0
        self.recent_durations = deque(maxlen=LATENCY_SAMPLE_SIZE)
        self.slowest = []                        # [{"duration_ms", "method", "path", "status"}, ...]

        self.by_resolution = defaultdict(int)    # {"primary": 30, "cache": 12, "rule_based": 2}
        self.tier_failures = defaultdict(int)    # {"primary": 3, "degraded": 1}
        self.rejections = defaultdict(int)       # {"minute": 4, "hour": 1}
        self.credential_rotations = 0

    # ─── 상태 머신 ───

    def record_resolution(self, resolved_by: str):
        self.by_resolution[resolved_by] += 1

    def record_tier_failure(self, tier: str):
        self.tier_failures[tier] += 1

    def record_rejection(self, reason: str):
        self.rejections[reason] += 1

    def record_rotation(self):
        self.credential_rotations += 1

    # ─── HTTP ───

    def record(self, method: str, path: str, status: int, duration_ms: float):
        self.total_requests += 1
        self.by_status[status] += 1
        self.by_path[f"{method} {path}"] += 1
        self.total_duration_ms += duration_ms
        self.recent_durations.append(duration_ms)

        self.slowest.append({
            "duration_ms": round(duration_ms, 1),
            "method": method,
            "path": path,
            "status": status,
        })
        self.slowest.sort(key=lambda x: x["duration_ms"], reverse=True)
        del self.slowest[5:]

    def p95_ms(self) -> float:
        if not self.recent_durations:
            return 0
        ordered = sorted(self.recent_durations)
        return round(ordered[min(len(ordered) - 1, int(len(ordered) * 0.95))], 1)

    def summary(self) -> dict:
        avg = round(self.total_duration_ms / self.total_requests, 1) if self.total_requests else 0
        return {
            "total_requests": self.total_requests,
            "avg_response_time_ms": avg,
            "p95_response_time_ms": self.p95_ms(),
            "by_status": dict(self.by_status),
            "by_path": dict(self.by_path),
            "slowest_top5": self.slowest,
            "by_resolution": dict(self.by_resolution),
            "tier_failures": dict(self.tier_failures),
            "credential_rotations": self.credential_rotations,
            "rate_limit_rejections": dict(self.rejections),
        }


# 싱글톤 인스턴스
metrics_store = MetricsStore()


class RequestMetricsMiddleware(BaseHTTPMiddleware):
    """
    모든 HTTP 요청 계측
    1. request_id 설정: 라우팅 계층이 X-Request-ID를 넘기면 그대로 이어받음
    2. 응답 시간 측정 후 집계 + JSON 로그
    3. 응답 헤더에 X-Request-ID
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        req_id = request.headers.get("x-request-id") or generate_request_id()
        token = request_id_var.set(req_id)
        start = time.perf_counter()

        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        duration_ms = (time.perf_counter() - start) * 1000
        metrics_store.record(request.method, request.url.path, response.status_code, duration_ms)

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            f"{request.method} {request.url.path} {response.status_code} {duration_ms:.0f}ms",
            extra={"extra_data": {
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 1),
            }},
        )

        response.headers["X-Request-ID"] = req_id
        return response
