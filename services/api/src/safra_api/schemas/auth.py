"""认证相关请求与响应结构。"""

from datetime import datetime
import re
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from safra_api.schemas.common import BaseSchema

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _validate_password_strength(value: str) -> str:
    """新口令至少包含一个小写字母、一个大写字母和一个数字。"""
    if not (re.search(r"[a-z]", value) and re.search(r"[A-Z]", value) and re.search(r"\d", value)):
        raise ValueError("password must contain a lowercase letter, an uppercase letter and a digit")
    return value


class AuthRegisterRequest(BaseModel):
    """注册请求。"""

    email: str = Field(
        min_length=5,
        max_length=256,
        pattern=_EMAIL_PATTERN,
        description="登录邮箱。",
        examples=["alice@example.com"],
    )
    password: str = Field(min_length=8, max_length=128, description="登录口令。", examples=["Passw0rd!"])
    display_name: str | None = Field(default=None, min_length=1, max_length=128, description="展示名。")

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class AuthLoginRequest(BaseModel):
    """登录请求，前台与后台共用。"""

    email: str = Field(
        min_length=5,
        max_length=256,
        pattern=_EMAIL_PATTERN,
        description="登录邮箱。",
        examples=["alice@example.com"],
    )
    password: str = Field(min_length=1, max_length=128, description="登录口令。", examples=["Passw0rd!"])


class PasswordChangeRequest(BaseModel):
    """修改口令请求。"""

    current_password: str = Field(min_length=1, max_length=128, description="当前口令。")
    new_password: str = Field(min_length=8, max_length=128, description="新口令。")

    @field_validator("new_password")
    @classmethod
    def check_new_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class ForgotPasswordRequest(BaseModel):
    """申请重置口令请求。"""

    email: str = Field(
        min_length=5,
        max_length=256,
        pattern=_EMAIL_PATTERN,
        description="登录邮箱。",
        examples=["alice@example.com"],
    )


class ResetPasswordRequest(BaseModel):
    """兑换重置令牌请求。"""

    token: str = Field(min_length=1, max_length=256, description="重置令牌。")
    new_password: str = Field(min_length=8, max_length=128, description="新口令。")

    @field_validator("new_password")
    @classmethod
    def check_new_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class PrincipalData(BaseSchema):
    """账号公开信息。"""

    id: UUID = Field(description="账号 ID。")
    email: str = Field(description="登录邮箱。")
    display_name: str = Field(description="展示名。")
    role: str = Field(description="账号角色。")
    is_active: bool = Field(description="是否启用。")
    last_login_at: datetime | None = Field(default=None, description="最近登录时间。")


class SessionData(BaseSchema):
    """会话令牌信息。"""

    access_token: str = Field(description="会话令牌，同时以 HttpOnly Cookie 下发。")
    token_type: str = Field(default="bearer", description="令牌类型。")
    pool: str = Field(description="会话池（user/admin）。")
    expires_at: datetime = Field(description="会话过期时间（UTC）。")
    expires_in: int = Field(description="距过期剩余秒数。")


class AuthLoginData(BaseSchema):
    """登录结果结构。"""

    user: PrincipalData = Field(description="当前账号。")
    session: SessionData = Field(description="新签发的会话。")


class AuthMeData(BaseSchema):
    """当前身份结构。"""

    user: PrincipalData = Field(description="当前账号。")
    pool: str = Field(description="当前会话所属池。")
    session_expires_at: datetime = Field(description="当前会话过期时间。")


class AuthLogoutData(BaseSchema):
    """登出结果结构。"""

    logged_out: bool = Field(description="是否已完成登出。")
    revoked: bool = Field(description="是否确实删除了一条有效会话。")


class PasswordChangeData(BaseSchema):
    """修改口令结果结构。"""

    password_changed: bool = Field(description="是否已修改。")
    revoked_sessions: int = Field(description="被失效的会话数量。")


class ForgotPasswordData(BaseSchema):
    """申请重置结果结构，对任何邮箱都相同。"""

    accepted: bool = Field(description="请求已受理。")
    message: str = Field(description="通用提示信息。")


class ResetPasswordData(BaseSchema):
    """兑换重置令牌结果结构。"""

    password_reset: bool = Field(description="是否已重置。")
