"""
core/errors.py — 业务异常

服务层只负责抛出，HTTP 层（web.py 的 exception handler）统一转换为
{"success": false, "error": ...} 响应，status_code 取自异常本身。
"""

from typing import Any


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str = "", details: Any = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details


class BadRequestError(ServiceError):
    status_code = 400


class AuthenticationError(ServiceError):
    """调用方身份令牌缺失或无效。"""

    status_code = 401


class PlanAccessError(ServiceError):
    """套餐已过期或额度不足。code 供前端区分提示文案。"""

    status_code = 403

    def __init__(self, message: str = "", code: str = "", details: Any = None, status_code: int = None):
        super().__init__(message, details=details)
        self.code = code
        if status_code:
            self.status_code = status_code


class NotFoundError(ServiceError):
    status_code = 404


class DuplicateSessionError(ServiceError):
    status_code = 409


class AuthError(ServiceError):
    """支付网关 client_credentials 换取 token 失败。"""

    status_code = 500


class UpstreamError(ServiceError):
    status_code = 500


class GatewayError(UpstreamError):
    """支付网关返回非 2xx，details 为上游原始响应。"""


class MissingRedirectError(GatewayError):
    pass


class InvalidResponseError(UpstreamError):
    pass


class UserNotFoundError(ServiceError):
    """支付记录存在但关联用户不存在，属于数据不一致。"""

    status_code = 500
