"""会话凭证提供者。

HTTP 客户端不直接依赖具体的登录实现（托管认证服务、环境变量等），
而是依赖 SessionProvider 协议取得 bearer token：

- 没有 provider、没有会话、没有 token，或 provider 自身出错：降级为无认证请求头。
- token 明显损坏（超过 max_token_length）：抛出 AuthError，拒绝请求，
  要求重新登录；绝不伪造凭证。
"""

import os
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from audit_ai.config.settings import settings
from audit_ai.domain.exceptions import AuthError
from audit_ai.infrastructure.logging.logger import logger


JSON_HEADERS = {"Content-Type": "application/json"}


@dataclass
class Session:
    access_token: Optional[str]
    user_id: Optional[str] = None
    email: Optional[str] = None


class SessionProvider(Protocol):
    def get_session(self) -> Optional[Session]:
        ...


class StaticSessionProvider:
    """固定会话，适合脚本与测试。"""

    def __init__(self, access_token: Optional[str], user_id: Optional[str] = None, email: Optional[str] = None):
        self._session = Session(access_token=access_token, user_id=user_id, email=email)

    def get_session(self) -> Optional[Session]:
        return self._session


class EnvSessionProvider:
    """从配置/环境变量读取会话（AUDIT_AI_ACCESS_TOKEN / AUDIT_AI_USER_ID）。"""

    def __init__(self, cfg=settings):
        self._settings = cfg

    def get_session(self) -> Optional[Session]:
        token = getattr(self._settings, "access_token", None) or os.getenv("AUDIT_AI_ACCESS_TOKEN")
        if not token:
            return None
        user_id = getattr(self._settings, "user_id", None) or os.getenv("AUDIT_AI_USER_ID")
        return Session(access_token=token, user_id=user_id)


def auth_headers(provider: Optional[SessionProvider], max_token_length: int) -> Dict[str, str]:
    """构造请求头；可用时注入 Authorization: Bearer <token>。"""

    if provider is None:
        return dict(JSON_HEADERS)
    try:
        session = provider.get_session()
    except Exception as e:
        logger.warning(
            "Session lookup failed, sending unauthenticated request",
            extra={"extra": {"error": str(e)}},
        )
        return dict(JSON_HEADERS)
    if session is None or not session.access_token:
        logger.warning("No active session, sending unauthenticated request")
        return dict(JSON_HEADERS)
    token = session.access_token
    if len(token) > max_token_length:
        raise AuthError(
            code="TOKEN_REJECTED",
            message="Session token is malformed, please sign in again",
            http_status=401,
            token_length=len(token),
        )
    return {**JSON_HEADERS, "Authorization": f"Bearer {token}"}
