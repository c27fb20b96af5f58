"""应用异常定义与处理注册。"""

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from safra_api.models.enums import AuthErrorCode
from safra_api.utils.response import DEFAULT_ERROR_MESSAGE, error_payload

logger = logging.getLogger(__name__)

# 认证错误码 -> (HTTP 状态码, 对外消息, 建议)。
# 对外消息只区分“未认证 / 无权限 / 已锁定”，不区分账号是否存在。
_AUTH_ERROR_TABLE: dict[AuthErrorCode, tuple[int, str, str]] = {
    AuthErrorCode.INVALID_CREDENTIALS: (
        status.HTTP_401_UNAUTHORIZED,
        "认证失败。",
        "请检查登录邮箱与口令后重试。",
    ),
    AuthErrorCode.ACCOUNT_LOCKED: (
        status.HTTP_423_LOCKED,
        "账号已被临时锁定。",
        "请稍后再试，或通过重置口令恢复访问。",
    ),
    AuthErrorCode.SESSION_EXPIRED_OR_INVALID: (
        status.HTTP_401_UNAUTHORIZED,
        "未登录或登录状态已失效。",
        "请重新登录。",
    ),
    AuthErrorCode.INSUFFICIENT_PERMISSIONS: (
        status.HTTP_403_FORBIDDEN,
        "无权限访问该资源。",
        "请确认当前账号角色是否具备该操作权限。",
    ),
    AuthErrorCode.INVALID_OR_EXPIRED_TOKEN: (
        status.HTTP_400_BAD_REQUEST,
        "令牌无效或已过期。",
        "请重新申请重置口令。",
    ),
    AuthErrorCode.VALIDATION_ERROR: (
        status.HTTP_422_UNPROCESSABLE_CONTENT,
        "请求参数校验失败。",
        "请根据错误字段提示修正请求参数后重试。",
    ),
    AuthErrorCode.RATE_LIMITED: (
        status.HTTP_429_TOO_MANY_REQUESTS,
        "请求过于频繁。",
        "请稍后再试。",
    ),
}


class AuthError(Exception):
    """认证组件领域异常，由异常处理器映射为统一错误结构。"""

    def __init__(self, code: AuthErrorCode, *, details: dict[str, object] | None = None) -> None:
        super().__init__(code.value)
        self.code = code
        self.details = details or {}

    @property
    def status_code(self) -> int:
        return _AUTH_ERROR_TABLE[self.code][0]


def _default_http_error_code(status_code: int) -> str:
    if status_code == status.HTTP_400_BAD_REQUEST:
        return "BAD_REQUEST"
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return "UNAUTHORIZED"
    if status_code == status.HTTP_403_FORBIDDEN:
        return "FORBIDDEN"
    if status_code == status.HTTP_404_NOT_FOUND:
        return "NOT_FOUND"
    if status_code == status.HTTP_409_CONFLICT:
        return "CONFLICT"
    if status_code == status.HTTP_422_UNPROCESSABLE_CONTENT:
        return "VALIDATION_ERROR"
    return "HTTP_ERROR"


def _default_http_message(status_code: int) -> str:
    if status_code == status.HTTP_400_BAD_REQUEST:
        return "请求参数不合法。"
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return "未登录或登录状态已失效。"
    if status_code == status.HTTP_403_FORBIDDEN:
        return "无权限访问该资源。"
    if status_code == status.HTTP_404_NOT_FOUND:
        return "请求资源不存在。"
    if status_code == status.HTTP_409_CONFLICT:
        return "请求与当前数据状态冲突。"
    if status_code == status.HTTP_422_UNPROCESSABLE_CONTENT:
        return "请求参数校验失败。"
    return "请求处理失败。"


def _default_http_suggestion(status_code: int) -> str:
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return "请重新登录。"
    if status_code == status.HTTP_403_FORBIDDEN:
        return "请确认当前账号角色是否具备该操作权限。"
    if status_code == status.HTTP_404_NOT_FOUND:
        return "请确认资源 ID 是否正确，或资源是否已被删除。"
    if status_code == status.HTTP_409_CONFLICT:
        return "请刷新页面获取最新数据后重试。"
    if status_code == status.HTTP_422_UNPROCESSABLE_CONTENT:
        return "请根据错误字段提示修正请求参数后重试。"
    return "请稍后重试，若持续失败请联系管理员。"


def _parse_http_detail(detail: object, status_code: int) -> tuple[str, str, dict[str, object]]:
    code = _default_http_error_code(status_code)
    message = _default_http_message(status_code)
    details: dict[str, object] = {
        "status_code": status_code,
        "reason": code.lower(),
        "suggestion": _default_http_suggestion(status_code),
    }

    if isinstance(detail, dict):
        code = str(detail.get("code") or code)
        message = str(detail.get("message") or detail.get("detail") or message)
        raw_details = detail.get("details")
        if isinstance(raw_details, dict):
            details.update(raw_details)
        elif raw_details is not None:
            details["details"] = raw_details
        return code, message, details

    if isinstance(detail, str) and detail.strip().lower() not in {"unauthorized", "forbidden", "not found"}:
        return code, detail, details

    return code, message, details


async def auth_error_handler(request: Request, exc: AuthError):
    """将认证领域异常包装为标准错误结构。"""
    status_code, message, suggestion = _AUTH_ERROR_TABLE[exc.code]
    details: dict[str, object] = {
        "status_code": status_code,
        "reason": exc.code.value.lower(),
        "suggestion": suggestion,
    }
    details.update(exc.details)
    return JSONResponse(
        status_code=status_code,
        content=error_payload(request, code=exc.code.value, message=message, details=details),
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """将协议异常统一包装为标准错误结构。"""
    code, message, details = _parse_http_detail(exc.detail, exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(request, code=code, message=message, details=details),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """统一处理请求参数校验错误。"""
    normalized_errors = [
        {
            "field": ".".join(str(item) for item in err.get("loc", []) if item != "body"),
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content=error_payload(
            request,
            code=AuthErrorCode.VALIDATION_ERROR.value,
            message="请求参数校验失败。",
            details={
                "status_code": status.HTTP_422_UNPROCESSABLE_CONTENT,
                "reason": "validation_error",
                "suggestion": _default_http_suggestion(status.HTTP_422_UNPROCESSABLE_CONTENT),
                "errors": normalized_errors,
            },
        ),
    )


def _internal_error_response(request: Request, reason: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(
            request,
            code="INTERNAL_ERROR",
            message=DEFAULT_ERROR_MESSAGE,
            details={
                "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR,
                "reason": reason,
                "suggestion": "请稍后重试，若持续失败请联系管理员并提供 request_id。",
            },
        ),
    )


async def storage_exception_handler(request: Request, exc: SQLAlchemyError):
    """存储异常统一按通用服务错误返回，不暴露为认证类错误。"""
    logger.exception(
        "storage error path=%s request_id=%s",
        request.url.path,
        getattr(request.state, "request_id", None),
    )
    return _internal_error_response(request, "storage_error")


async def unexpected_exception_handler(request: Request, exc: Exception):
    """处理未捕获异常，避免内部细节泄露。"""
    logger.exception(
        "unhandled error path=%s request_id=%s",
        request.url.path,
        getattr(request.state, "request_id", None),
    )
    return _internal_error_response(request, "unexpected_exception")


def register_exception_handlers(app: FastAPI) -> None:
    """集中注册异常处理器。"""
    app.exception_handler(AuthError)(auth_error_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(SQLAlchemyError)(storage_exception_handler)
    app.exception_handler(Exception)(unexpected_exception_handler)
