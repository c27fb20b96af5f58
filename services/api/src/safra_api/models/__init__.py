"""ORM 模型导出集合。"""

from safra_api.models.auth import AdminSession, LoginAttempt, PasswordResetToken, UserSession
from safra_api.models.user import User

__all__ = [
    "AdminSession",
    "LoginAttempt",
    "PasswordResetToken",
    "User",
    "UserSession",
]
