"""请求上下文依赖。

职责:
1. 从 Bearer 头或会话池专属 Cookie 中读取令牌（Bearer 优先）。
2. 只在对应会话池内校验令牌，得到当前账号。
3. 在会话校验之后做后台角色门禁。
"""

from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from safra_api.core.rate_limit import client_ip
from safra_api.db.session import get_db
from safra_api.exceptions import AuthError
from safra_api.models.auth import AdminSession, UserSession
from safra_api.models.enums import AuthErrorCode, SessionPool
from safra_api.models.user import User
from safra_api.services.authorization import authorize
from safra_api.services.sessions import ClientMeta, validate_session
from safra_api.utils.response import cookie_name_for

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    """已认证请求上下文。

    路由层统一使用该对象，避免重复解析令牌与账号。
    """

    # 当前账号。
    user: User
    # 当前会话记录。
    session: UserSession | AdminSession
    # 会话所属池。
    pool: SessionPool
    # 请求携带的明文令牌，仅用于登出与轮换。
    token: str


def get_client_meta(request: Request) -> ClientMeta:
    """提取客户端 IP 与 User-Agent。"""
    return ClientMeta(ip_address=client_ip(request), user_agent=request.headers.get("user-agent"))


def presented_token(
    request: Request,
    pool: SessionPool,
    credentials: HTTPAuthorizationCredentials | None,
) -> str | None:
    """返回请求携带的会话令牌，Bearer 优先于 Cookie。"""
    if credentials is not None and credentials.credentials:
        return credentials.credentials.strip()
    return request.cookies.get(cookie_name_for(pool))


def _session_dependency(pool: SessionPool):
    def _dep(
        request: Request,
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
        db: Session = Depends(get_db),
    ) -> AuthContext:
        token = presented_token(request, pool, credentials)
        validated = validate_session(db, token, pool)
        if validated is None or token is None:
            raise AuthError(AuthErrorCode.SESSION_EXPIRED_OR_INVALID)
        return AuthContext(user=validated.user, session=validated.record, pool=pool, token=token)

    return _dep


# 用户池只认用户会话，管理池只认管理员会话。
get_user_context = _session_dependency(SessionPool.USER)
get_admin_context = _session_dependency(SessionPool.ADMIN)


def require_admin_roles(*allowed_roles: str):
    """按账号角色做后台路由级权限限制，必须串在管理员会话校验之后。"""

    def _dep(ctx: AuthContext = Depends(get_admin_context)) -> AuthContext:
        authorize(ctx.user, allowed_roles)
        return ctx

    return _dep
