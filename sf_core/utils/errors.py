"""
SettleFlow 错误处理系统
遵循 RFC7807 Problem Details 标准
"""
from typing import Optional
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field


class ProblemDetail(BaseModel):
    """RFC7807 Problem Details 模型"""
    model_config = ConfigDict(
        extra="allow",
        json_schema_extra={
            "example": {
                "type": "about:blank",
                "title": "Bad Request",
                "status": 400,
                "detail": "Webhook signature does not match payload",
                "code": "INVALID_SIGNATURE"
            }
        },
    )

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: Optional[str] = None
    instance: Optional[str] = None
    code: Optional[str] = None  # 业务错误码


class SettleFlowException(Exception):
    """SettleFlow 基础异常类"""

    def __init__(
        self,
        status: int,
        code: str,
        title: str,
        detail: Optional[str] = None,
        **kwargs
    ):
        self.status = status
        self.code = code
        self.title = title
        self.detail = detail
        self.extra = kwargs
        super().__init__(detail or title)

    def to_problem_detail(self, instance: Optional[str] = None) -> ProblemDetail:
        """转换为 Problem Details 格式"""
        return ProblemDetail(
            type="about:blank",
            title=self.title,
            status=self.status,
            detail=self.detail,
            instance=instance,
            code=self.code,
            **self.extra
        )

    def to_response(self, request: Optional[Request] = None) -> JSONResponse:
        """转换为 JSON 响应"""
        instance = str(request.url) if request else None
        problem = self.to_problem_detail(instance)

        return JSONResponse(
            status_code=self.status,
            content={
                "ok": False,
                "error": problem.model_dump(exclude_none=True)
            }
        )


# 预定义错误类
class BadRequestError(SettleFlowException):
    """400 错误请求"""
    def __init__(self, code: str, detail: str):
        super().__init__(
            status=400,
            code=code,
            title="Bad Request",
            detail=detail
        )


class UnauthorizedError(SettleFlowException):
    """401 未授权"""
    def __init__(self, code: str = "UNAUTHORIZED", detail: str = "Authentication required"):
        super().__init__(
            status=401,
            code=code,
            title="Unauthorized",
            detail=detail
        )


class ForbiddenError(SettleFlowException):
    """403 禁止访问"""
    def __init__(self, code: str = "FORBIDDEN", detail: str = "Access denied"):
        super().__init__(
            status=403,
            code=code,
            title="Forbidden",
            detail=detail
        )


class NotFoundError(SettleFlowException):
    """404 未找到"""
    def __init__(self, code: str, resource: str):
        super().__init__(
            status=404,
            code=code,
            title="Not Found",
            detail=f"{resource} not found"
        )


class ConflictError(SettleFlowException):
    """409 冲突"""
    def __init__(self, code: str, detail: str):
        super().__init__(
            status=409,
            code=code,
            title="Conflict",
            detail=detail
        )


class ValidationError(SettleFlowException):
    """422 验证失败"""
    def __init__(self, code: str, detail: str):
        super().__init__(
            status=422,
            code=code,
            title="Validation Failed",
            detail=detail
        )


class InternalServerError(SettleFlowException):
    """500 内部错误"""
    def __init__(self, code: str = "INTERNAL_ERROR", detail: str = "An internal error occurred"):
        super().__init__(
            status=500,
            code=code,
            title="Internal Server Error",
            detail=detail
        )


class ServiceUnavailableError(SettleFlowException):
    """503 服务不可用"""
    def __init__(self, code: str = "SERVICE_UNAVAILABLE", detail: str = "Service temporarily unavailable"):
        super().__init__(
            status=503,
            code=code,
            title="Service Unavailable",
            detail=detail
        )


# 结算领域错误
class SignatureVerificationError(BadRequestError):
    """webhook 签名缺失或校验失败，拒绝解析"""
    def __init__(self, code: str = "INVALID_SIGNATURE", detail: str = "Webhook signature verification failed"):
        super().__init__(code=code, detail=detail)


class MalformedEventError(BadRequestError):
    """事件体或 metadata 无法解析为结算所需结构"""
    def __init__(self, detail: str, code: str = "MALFORMED_EVENT"):
        super().__init__(code=code, detail=detail)


class ExhaustedRetriesError(SettleFlowException):
    """唯一编码生成超过重试上限

    单独的错误码便于运维发现字母表压力。
    """
    def __init__(self, kind: str, attempts: int):
        super().__init__(
            status=500,
            code="CODE_GENERATION_EXHAUSTED",
            title="Code Generation Exhausted",
            detail=f"Could not generate a unique {kind} after {attempts} attempts",
            attempts=attempts,
        )
        self.kind = kind
        self.attempts = attempts


class PaymentProviderError(SettleFlowException):
    """502 支付服务商接口异常"""
    def __init__(self, code: str = "PAYMENT_PROVIDER_ERROR", detail: str = "Payment provider request failed"):
        super().__init__(
            status=502,
            code=code,
            title="Bad Gateway",
            detail=detail
        )


class ConcurrencyError(Exception):
    """余额乐观锁重试耗尽"""
    pass


class CourierSubmissionError(Exception):
    """快递下单失败（非 2xx、网络错误或响应缺少运单号）"""
    pass
