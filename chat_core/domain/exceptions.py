"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

每个子类声明默认 HTTP 状态码；public_message 不为空时，
对终端用户只展示该文案，原始 message 仅写入日志。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 详细错误信息（可能包含内部细节，仅用于日志）。
        http_status: 映射到 HTTP 时使用的状态码，默认取类属性 default_http_status。
        extra: 其他补充字段（例如 provider、status_code 等）。
    """

    default_http_status = 400
    public_message: Optional[str] = None

    def __init__(self, code: str, message: str, http_status: Optional[int] = None, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status or self.default_http_status
        self.extra = extra
        super().__init__(message)

    @property
    def user_message(self) -> str:
        """可以安全展示给终端用户的错误文案。"""

        return self.public_message or self.message


class ValidationError(BusinessError):
    """用户输入或参数校验失败，不会自动重试。"""


class ServiceUnavailable(BusinessError):
    """LLM 服务暂不可用，调用方稍后重试。"""

    default_http_status = 503
    public_message = "AI service is temporarily unavailable. Please try again later."


class NetworkError(ServiceUnavailable):
    """网络层错误，例如连接失败、超时等。"""


class RateLimitError(ServiceUnavailable):
    """Provider 限流错误，由上层负责重试/退避策略。"""

    default_http_status = 429
    public_message = "Rate limit exceeded. Please wait a moment before trying again."


class AuthError(BusinessError):
    """Provider 拒绝凭据；对用户只暴露通用提示。"""

    default_http_status = 500
    public_message = "Authentication error. Please contact support if this persists."


class ApiError(BusinessError):
    """第三方 API 返回其他非 2xx 错误或无效响应。"""

    default_http_status = 500
    public_message = "Failed to process your message. Please try again."


class StorageError(BusinessError):
    """会话存储读写失败。"""

    default_http_status = 500
    public_message = "Failed to process your message. Please try again."


class NotFoundError(BusinessError):
    """会话不存在（区别于 StorageError）。"""

    default_http_status = 404
