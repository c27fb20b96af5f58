"""服务层能力导出集合。"""

from safra_api.services.authorization import (
    ACCOUNT_UNLOCK_ROLES,
    ROLE_MANAGER_ROLES,
    authorize,
    ensure_role_change_allowed,
)
from safra_api.services.credentials import (
    change_password,
    check_ip_throttle,
    get_user_by_email,
    is_locked,
    normalize_email,
    register_user,
    set_password,
    unlock_account,
    verify_credentials,
)
from safra_api.services.password_reset import redeem_reset, request_reset
from safra_api.services.sessions import (
    ClientMeta,
    IssuedSession,
    ValidatedSession,
    create_session,
    invalidate_all_sessions_for,
    invalidate_session,
    rotate_session,
    validate_session,
)

__all__ = [
    "ACCOUNT_UNLOCK_ROLES",
    "ROLE_MANAGER_ROLES",
    "authorize",
    "ensure_role_change_allowed",
    "change_password",
    "check_ip_throttle",
    "get_user_by_email",
    "is_locked",
    "normalize_email",
    "register_user",
    "set_password",
    "unlock_account",
    "verify_credentials",
    "redeem_reset",
    "request_reset",
    "ClientMeta",
    "IssuedSession",
    "ValidatedSession",
    "create_session",
    "invalidate_all_sessions_for",
    "invalidate_session",
    "rotate_session",
    "validate_session",
]
