from fastapi import FastAPI
from contextlib import asynccontextmanager
from core.dependencies import init_connections, close_connections
from core.exceptions import RateLimitedError, rate_limited_exception_handler
from core.metrics import RequestMetricsMiddleware, metrics_store
from router import assistant, admin

@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await init_connections()
        yield
    finally:
        await close_connections()

app = FastAPI(
    title="AI Assistant Gateway",
    description="LangGraph 기반 응답 생성 상태 머신: 사용량 제한, 캐시, 키 교체, 티어 폴백",
    version="0.1.0",
    lifespan=lifespan
)

# 미들웨어 등록 (모든 요청을 자동 계측)
app.add_middleware(RequestMetricsMiddleware)

# 사용량 제한 초과 → 429 + retryAfter
app.add_exception_handler(RateLimitedError, rate_limited_exception_handler)

app.include_router(assistant.router, prefix="/api/assistant", tags=["Assistant"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])

@app.get("/health")
async def health():
    return {"status": "ok"}

@app.get("/api/metrics", tags=["Monitoring"])
async def get_metrics():
    """실시간 메트릭 조회: 총 요청 수, 응답 시간, 응답 경로별 / 거절 사유별 분포 등"""
    return metrics_store.summary()
