"""领域枚举定义。"""

from enum import StrEnum


class PrincipalRole(StrEnum):
    """账号角色。"""

    USER = "user"  # 普通读者/发布者，只能使用用户会话池。
    EDITOR = "editor"  # 编辑，可进入后台维护内容。
    MODERATOR = "moderator"  # 审核员，可处理举报与解锁账号。
    ADMIN = "admin"  # 管理员，可管理账号角色。
    SUPER_ADMIN = "super_admin"  # 超级管理员，具备全部后台权限。


class SessionPool(StrEnum):
    """会话池，两个池互不交叉授权。"""

    USER = "user"  # 前台用户会话。
    ADMIN = "admin"  # 后台管理员会话。


class ResetTokenStatus(StrEnum):
    """密码重置令牌状态。过期由 expires_at 推导，不单独落库。"""

    ISSUED = "issued"  # 已签发，等待兑换。
    REDEEMED = "redeemed"  # 已兑换，终态。
    SUPERSEDED = "superseded"  # 被同一账号新签发的令牌替代，终态。


class AuthErrorCode(StrEnum):
    """认证错误码。"""

    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    SESSION_EXPIRED_OR_INVALID = "SESSION_EXPIRED_OR_INVALID"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    INVALID_OR_EXPIRED_TOKEN = "INVALID_OR_EXPIRED_TOKEN"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RATE_LIMITED = "RATE_LIMITED"


# 可以登录后台会话池的角色。
ADMIN_ROLES = frozenset(
    {PrincipalRole.EDITOR, PrincipalRole.MODERATOR, PrincipalRole.ADMIN, PrincipalRole.SUPER_ADMIN}
)
