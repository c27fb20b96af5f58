"""认证相关模型。"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from safra_api.models.base import Base, CreatedAtMixin, UUIDPrimaryKeyMixin
from safra_api.models.enums import ResetTokenStatus


class SessionRecordMixin(UUIDPrimaryKeyMixin, CreatedAtMixin):
    """服务端会话记录的公共字段。"""

    # 会话令牌的 SHA-256 摘要，明文只在签发时返回一次。
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    # 所属账号 ID（逻辑关联 users.id，不声明数据库外键）。
    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    # 过期时间，校验时惰性判断。
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    # 签发时客户端 IP。
    ip_address: Mapped[str | None] = mapped_column(String(45))
    # 签发时客户端 User-Agent。
    user_agent: Mapped[str | None] = mapped_column(Text)


class UserSession(Base, SessionRecordMixin):
    """前台用户会话。"""

    __tablename__ = "user_sessions"


class AdminSession(Base, SessionRecordMixin):
    """后台管理员会话，与用户会话分表存储。"""

    __tablename__ = "admin_sessions"


class LoginAttempt(Base, UUIDPrimaryKeyMixin):
    """登录尝试记录，用于按 IP 的失败次数限制与安全排查。"""

    __tablename__ = "login_attempts"

    # 尝试使用的邮箱（规范化后）。
    email: Mapped[str] = mapped_column(String(256), nullable=False, index=True)
    # 客户端 IP，IPv6 最长 45 字符。
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False, index=True)
    # 尝试的会话池（user/admin）。
    pool: Mapped[str] = mapped_column(String(16), nullable=False)
    # 是否成功。
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # 尝试时间。
    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )


class PasswordResetToken(Base, UUIDPrimaryKeyMixin, CreatedAtMixin):
    """一次性密码重置令牌。"""

    __tablename__ = "password_reset_tokens"

    # 所属账号 ID。
    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    # 令牌 SHA-256 摘要。
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    # 令牌状态（issued/redeemed/superseded）。
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ResetTokenStatus.ISSUED)
    # 过期时间。
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # 兑换时间。
    redeemed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
