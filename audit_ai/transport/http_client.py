"""后端 REST API 的 HTTP 客户端。

负责：
- 拼接 base URL（配置中的 api_base_url，已规范为以 /api 结尾）。
- JSON 请求头与 bearer token 注入（见 audit_ai.auth.session）。
- 错误归一化：429 -> RateLimitError，其他非 2xx -> ApiError，
  连接/读取失败 -> NetworkError。
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import httpx

from audit_ai.auth.session import SessionProvider, auth_headers
from audit_ai.config.settings import settings
from audit_ai.domain.exceptions import ApiError, BusinessError, NetworkError, RateLimitError
from audit_ai.infrastructure.logging.logger import logger


class ApiClient:
    """显式构造的 API 客户端实例，通过依赖注入传给各服务。"""

    def __init__(self, session_provider: Optional[SessionProvider] = None, cfg=settings):
        self._session_provider = session_provider
        self._settings = cfg

    def url(self, endpoint: str) -> str:
        return f"{self._settings.api_base_url}/{endpoint.lstrip('/')}"

    def headers(self, require_auth: bool = True) -> Dict[str, str]:
        provider = self._session_provider if require_auth else None
        return auth_headers(provider, getattr(self._settings, "max_token_length", 4000))

    # ---- 普通请求 ----

    def get(self, endpoint: str, **kw) -> Dict[str, Any]:
        return self.request("GET", endpoint, **kw)

    def post(self, endpoint: str, data: Any = None, **kw) -> Dict[str, Any]:
        return self.request("POST", endpoint, json=data, **kw)

    def delete(self, endpoint: str, **kw) -> Dict[str, Any]:
        return self.request("DELETE", endpoint, **kw)

    def request(
        self,
        method: str,
        endpoint: str,
        json: Any = None,
        files: Optional[Dict[str, Any]] = None,
        require_auth: bool = True,
    ) -> Dict[str, Any]:
        headers = self.headers(require_auth)
        if files is not None:
            # multipart 的 Content-Type 由 httpx 生成 boundary
            headers.pop("Content-Type", None)
        url = self.url(endpoint)
        log_ctx = {"method": method, "endpoint": endpoint}
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.request(method, url, json=json, files=files, headers=headers)
        except httpx.RequestError as e:
            logger.error(f"Request failed: {e}", extra={"extra": log_ctx})
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__, endpoint=endpoint)
        if resp.status_code >= 400:
            err = self._status_error(resp, endpoint)
            logger.error(
                "Request returned error status",
                extra={"extra": {**log_ctx, "status": resp.status_code, "error": err.message}},
            )
            raise err
        if resp.status_code == 204:
            return {}
        try:
            data = resp.json()
        except ValueError:
            raise ApiError(
                code="INVALID_RESPONSE",
                message="Response body is not valid JSON",
                http_status=resp.status_code,
                endpoint=endpoint,
            )
        return data if isinstance(data, dict) else {"data": data}

    # ---- 流式请求 ----

    @contextmanager
    def open_stream(self, endpoint: str, payload: Dict[str, Any]) -> Iterator[httpx.Response]:
        """打开一个流式 POST 请求，读取超时取 stream_idle_timeout。"""

        headers = self.headers()
        timeout = httpx.Timeout(
            self._settings.http_timeout,
            read=getattr(self._settings, "stream_idle_timeout", self._settings.http_timeout),
        )
        try:
            with httpx.Client(timeout=timeout, trust_env=False) as client:
                with client.stream("POST", self.url(endpoint), json=payload, headers=headers) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        raise self._status_error(resp, endpoint)
                    yield resp
        except httpx.TimeoutException as e:
            raise NetworkError(code="STREAM_TIMEOUT", message=f"Stream timed out: {e}", endpoint=endpoint)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__, endpoint=endpoint)

    @staticmethod
    def _status_error(resp, endpoint: str) -> BusinessError:
        server_msg = None
        try:
            body = resp.json()
            if isinstance(body, dict):
                server_msg = body.get("error") or body.get("message")
        except ValueError:
            pass
        message = server_msg or f"HTTP {resp.status_code}"
        if resp.status_code == 429:
            return RateLimitError(code="RATE_LIMIT", message=message, http_status=429, endpoint=endpoint)
        return ApiError(code="API_ERROR", message=message, http_status=resp.status_code, endpoint=endpoint)
