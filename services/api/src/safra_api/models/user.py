"""账号（Principal）模型。"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from safra_api.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from safra_api.models.enums import PrincipalRole


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """平台账号，前台用户与后台管理员共用同一凭据存储。"""

    __tablename__ = "users"

    # 登录邮箱，规范化为小写后全局唯一。
    email: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    # bcrypt 口令哈希，不存明文。
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    # 前端展示名。
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    # 账号角色，只能通过后台显式操作变更。
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=PrincipalRole.USER)
    # 停用账号不能登录，已有会话也不再生效。
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # 自上次成功登录以来的连续失败次数。
    failed_login_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    # 锁定截止时间，为空表示未锁定。
    locked_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    # 最近一次成功登录时间。
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # 最近一次修改口令时间。
    password_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
