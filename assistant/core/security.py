from datetime import datetime, timedelta, timezone
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from core.config import settings

# HTTPBearer: Authorization 헤더에서 "Bearer <token>" 자동 추출
# auto_error=False: 헤더가 없을 때 403 대신 직접 401을 내기 위해
security_schema = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, role: str = "user") -> str:
    """라우팅 계층이 발급하는 것과 같은 형태의 토큰 (테스트 / 로컬 개발용)"""
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expire_minutes)
    payload = {
        "sub": user_id,
        "role": role,
        "exp": expire,
        "type": "access"
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="토큰 검증에 실패했습니다")

    if payload.get("sub") is None or payload.get("type", "access") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="유효하지 않은 접근 토큰입니다")
    return payload


async def get_token_payload(
    credentials: HTTPAuthorizationCredentials = Depends(security_schema),
) -> dict:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="인증 토큰이 제공되지 않았습니다")
    return decode_access_token(credentials.credentials)


async def get_current_user_id(payload: dict = Depends(get_token_payload)) -> str:
    """JWT의 sub = 사용량 제한 / 캐시 / 프로필의 유저 키"""
    return str(payload["sub"])


async def get_current_admin(payload: dict = Depends(get_token_payload)) -> str:
    """관리자 권한이 있는 사용자만 통과시킵니다."""
    if payload.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="관리자 권한이 필요합니다")
    return str(payload["sub"])
