"""角色门禁。

仅对已通过会话校验的账号做角色判断，不能替代会话校验；账号缺失时一律拒绝。
"""

from collections.abc import Collection
import logging

from safra_api.exceptions import AuthError
from safra_api.models.enums import AuthErrorCode, PrincipalRole
from safra_api.models.user import User

logger = logging.getLogger(__name__)

# 可修改账号角色的后台角色。
ROLE_MANAGER_ROLES = frozenset({PrincipalRole.ADMIN, PrincipalRole.SUPER_ADMIN})
# 可解除账号锁定的后台角色。
ACCOUNT_UNLOCK_ROLES = frozenset({PrincipalRole.MODERATOR, PrincipalRole.ADMIN, PrincipalRole.SUPER_ADMIN})
# 只有超级管理员可以授予或回收的角色。
PRIVILEGED_ROLES = frozenset({PrincipalRole.ADMIN, PrincipalRole.SUPER_ADMIN})


def authorize(user: User | None, required_roles: Collection[str]) -> None:
    """校验账号角色是否在允许集合内。"""
    if user is None:
        raise AuthError(AuthErrorCode.SESSION_EXPIRED_OR_INVALID)
    if user.role not in required_roles:
        logger.warning(
            "role check denied user_id=%s role=%s required=%s",
            user.id,
            user.role,
            ",".join(sorted(str(role) for role in required_roles)),
        )
        raise AuthError(AuthErrorCode.INSUFFICIENT_PERMISSIONS)


def ensure_role_change_allowed(actor: User, target: User, new_role: str) -> None:
    """校验角色变更操作本身是否被允许。"""
    authorize(actor, ROLE_MANAGER_ROLES)
    if actor.id == target.id:
        # 不允许自行改变角色，避免自我提权或误降级。
        raise AuthError(AuthErrorCode.INSUFFICIENT_PERMISSIONS)
    touches_privileged = new_role in PRIVILEGED_ROLES or target.role in PRIVILEGED_ROLES
    if touches_privileged and actor.role != PrincipalRole.SUPER_ADMIN:
        raise AuthError(AuthErrorCode.INSUFFICIENT_PERMISSIONS)
