"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在服务层或 UI 层做统一捕获与用户提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "FILE_TOO_LARGE"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 endpoint、user_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、读取超时等。"""


class ApiError(BusinessError):
    """后端返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """后端限流错误，由上层决定是否重试。"""


class ValidationError(BusinessError):
    """参数或附件校验失败，不会发起任何网络请求。"""


class AuthError(BusinessError):
    """会话凭证被拒绝（例如 token 损坏），请求直接失败并要求重新登录。"""
