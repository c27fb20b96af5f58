"""统一响应包裹结构。

成功: `{request_id, data, meta}`；失败: `{request_id, error: {code, message, details}}`。
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field


class BaseSchema(BaseModel):
    """基础结构，开启对象映射能力。"""

    model_config = ConfigDict(from_attributes=True)


class ResponseMeta(BaseSchema):
    """成功响应附带的请求元信息。"""

    model_config = ConfigDict(from_attributes=True, extra="allow")

    message: str = Field(description="操作结果提示。")
    method: str = Field(description="请求方法。")
    path: str = Field(description="请求路径。")
    timestamp: str = Field(description="响应生成时间（UTC，ISO 8601）。")
    process_ms: int | None = Field(default=None, description="服务端处理耗时（毫秒）。")


class ErrorPayload(BaseSchema):
    """错误主体。"""

    code: str = Field(
        description="机器可识别错误码，例如 INVALID_CREDENTIALS / ACCOUNT_LOCKED / RATE_LIMITED。",
    )
    message: str = Field(description="人类可读错误信息，不区分账号是否存在。")
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="错误细节，至少包含 status_code / reason / suggestion。",
    )


class ErrorResponse(BaseSchema):
    """统一错误响应。"""

    request_id: str | None = Field(description="请求追踪 ID，与响应头 X-Request-Id 一致。")
    error: ErrorPayload = Field(description="错误主体。")


T = TypeVar("T")


class SuccessResponse(BaseSchema, Generic[T]):
    """统一成功响应。"""

    request_id: str = Field(description="请求追踪 ID，与响应头 X-Request-Id 一致。")
    data: T = Field(description="业务返回数据主体。")
    meta: ResponseMeta = Field(description="请求元信息。")


class HealthStatusData(BaseSchema):
    """健康检查结果。"""

    status: str = Field(description="服务状态（ok / ready / degraded）。")
    checks: dict[str, str] = Field(default_factory=dict, description="各依赖的检查结果。")
