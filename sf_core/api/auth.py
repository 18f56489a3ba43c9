"""
认证依赖

店面签发的 JWT（Bearer）识别买家；运维接口使用 X-API-Key。
"""
import hmac
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from sf_core.config import Settings
from sf_core.utils.errors import ServiceUnavailableError, UnauthorizedError
from sf_core.utils.logger import get_logger
from .deps import get_app_settings

logger = get_logger(__name__)

# auto_error=False：缺少凭证时返回统一的 401 问题详情
security = HTTPBearer(auto_error=False)


def decode_access_token(token: str, settings: Settings) -> dict:
    """解码并校验 JWT"""
    options = {"verify_aud": settings.jwt_audience is not None}
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
    except JWTError as e:
        raise UnauthorizedError(
            code="INVALID_TOKEN",
            detail=f"Token validation failed: {str(e)}"
        )


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_app_settings),
) -> str:
    """从 Bearer 令牌中取出用户 ID（sub）"""
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError(code="MISSING_TOKEN", detail="Authorization header required")

    payload = decode_access_token(credentials.credentials, settings)
    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError(code="INVALID_TOKEN", detail="Token has no subject")
    return str(user_id)


async def require_admin_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """校验运维 API Key"""
    if not settings.admin_api_key:
        raise ServiceUnavailableError(code="ADMIN_KEY_NOT_CONFIGURED", detail="Admin API key is not configured")
    if not x_api_key or not hmac.compare_digest(x_api_key, settings.admin_api_key):
        logger.warning("Invalid admin API key")
        raise UnauthorizedError(code="INVALID_API_KEY", detail="Invalid or missing API key")
