"""前台账号认证接口。"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from safra_api.core.rate_limit import auth_rate_limit, client_ip, general_rate_limit
from safra_api.db.session import get_db
from safra_api.dependencies import (
    AuthContext,
    bearer_scheme,
    get_client_meta,
    get_user_context,
    presented_token,
)
from safra_api.exceptions import AuthError
from safra_api.models.enums import AuthErrorCode, SessionPool
from safra_api.models.user import User
from safra_api.schemas.auth import (
    AuthLoginData,
    AuthLoginRequest,
    AuthLogoutData,
    AuthMeData,
    AuthRegisterRequest,
    ForgotPasswordData,
    ForgotPasswordRequest,
    PasswordChangeData,
    PasswordChangeRequest,
    ResetPasswordData,
    ResetPasswordRequest,
)
from safra_api.schemas.common import ErrorResponse, SuccessResponse
from safra_api.services import (
    ClientMeta,
    IssuedSession,
    change_password,
    check_ip_throttle,
    create_session,
    invalidate_session,
    redeem_reset,
    register_user,
    request_reset,
    rotate_session,
    verify_credentials,
)
from safra_api.utils.response import clear_session_cookie, set_session_cookie, success

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

FORGOT_PASSWORD_MESSAGE = "如果该邮箱已注册，重置链接将发送至该邮箱。"


def principal_payload(user: User) -> dict[str, Any]:
    """账号对外可见字段，不包含口令哈希与锁定信息。"""
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "role": user.role,
        "is_active": user.is_active,
        "last_login_at": user.last_login_at,
    }


def session_payload(issued: IssuedSession) -> dict[str, Any]:
    return {
        "access_token": issued.token,
        "token_type": "bearer",
        "pool": issued.pool,
        "expires_at": issued.expires_at,
        "expires_in": issued.expires_in,
    }


def login_for_pool(
    db: Session,
    response: Response,
    payload: AuthLoginRequest,
    *,
    pool: SessionPool,
    meta: ClientMeta,
    allowed_roles=None,
) -> dict[str, Any]:
    """两个会话池共用的登录流程：IP 限制 -> 凭据校验 -> 签发会话 -> 下发 Cookie。"""
    ip_address = meta.ip_address or "unknown"
    check_ip_throttle(db, ip_address)
    user = verify_credentials(
        db,
        payload.email,
        payload.password,
        ip_address=ip_address,
        pool=pool,
        allowed_roles=allowed_roles,
    )
    issued = create_session(db, user, pool, meta)
    db.commit()
    set_session_cookie(response, pool, issued.token, issued.expires_at)
    logger.info("login succeeded pool=%s user_id=%s", pool, user.id)
    return {"user": principal_payload(user), "session": session_payload(issued)}


def logout_for_pool(
    db: Session,
    request: Request,
    response: Response,
    *,
    pool: SessionPool,
    credentials: HTTPAuthorizationCredentials | None,
) -> dict[str, Any]:
    """登出幂等：无论令牌是否有效都清除 Cookie 并返回成功。"""
    token = presented_token(request, pool, credentials)
    revoked = invalidate_session(db, token, pool)
    db.commit()
    clear_session_cookie(response, pool)
    return {"logged_out": True, "revoked": revoked}


def refresh_for_pool(
    db: Session,
    request: Request,
    response: Response,
    *,
    pool: SessionPool,
    credentials: HTTPAuthorizationCredentials | None,
    meta: ClientMeta,
) -> dict[str, Any]:
    """轮换会话令牌，旧令牌立即失效。"""
    token = presented_token(request, pool, credentials)
    rotated = rotate_session(db, token, pool, meta)
    if rotated is None:
        raise AuthError(AuthErrorCode.SESSION_EXPIRED_OR_INVALID)
    user, issued = rotated
    db.commit()
    set_session_cookie(response, pool, issued.token, issued.expires_at)
    return {"user": principal_payload(user), "session": session_payload(issued)}


def me_payload(ctx: AuthContext) -> dict[str, Any]:
    return {
        "user": principal_payload(ctx.user),
        "pool": ctx.pool,
        "session_expires_at": ctx.session.expires_at,
    }


@router.post(
    "/register",
    summary="注册账号",
    description="使用邮箱与口令创建前台账号，注册成功即签发用户会话。",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessResponse[AuthLoginData],
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    dependencies=[Depends(general_rate_limit)],
)
def register(
    payload: AuthRegisterRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    meta: ClientMeta = Depends(get_client_meta),
):
    """注册账号并直接登录。"""
    user = register_user(db, email=payload.email, password=payload.password, display_name=payload.display_name)
    issued = create_session(db, user, SessionPool.USER, meta)
    db.commit()
    set_session_cookie(response, SessionPool.USER, issued.token, issued.expires_at)
    return success(request, {"user": principal_payload(user), "session": session_payload(issued)})


@router.post(
    "/login",
    summary="前台登录",
    description="校验邮箱口令，签发用户会话；令牌同时通过响应体与 HttpOnly Cookie 返回。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthLoginData],
    responses={
        401: {"model": ErrorResponse},
        423: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
    dependencies=[Depends(auth_rate_limit)],
)
def login(
    payload: AuthLoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    meta: ClientMeta = Depends(get_client_meta),
):
    """前台账号登录。"""
    data = login_for_pool(db, response, payload, pool=SessionPool.USER, meta=meta)
    return success(request, data)


@router.post(
    "/logout",
    summary="前台登出",
    description="删除当前用户会话并清除 Cookie；重复调用同样返回成功。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthLogoutData],
    responses={500: {"model": ErrorResponse}},
)
def logout(
    request: Request,
    response: Response,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
):
    """前台登出。"""
    data = logout_for_pool(db, request, response, pool=SessionPool.USER, credentials=credentials)
    return success(request, data)


@router.get(
    "/me",
    summary="获取当前身份",
    description="返回当前用户会话对应的账号信息。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthMeData],
    responses={401: {"model": ErrorResponse}},
)
def me(request: Request, ctx: AuthContext = Depends(get_user_context)):
    """查询当前登录账号。"""
    return success(request, me_payload(ctx))


@router.post(
    "/refresh",
    summary="轮换用户会话",
    description="用当前有效会话换取新令牌，旧令牌立即失效。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthLoginData],
    responses={401: {"model": ErrorResponse}},
)
def refresh(
    request: Request,
    response: Response,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
    meta: ClientMeta = Depends(get_client_meta),
):
    """轮换用户会话令牌。"""
    data = refresh_for_pool(db, request, response, pool=SessionPool.USER, credentials=credentials, meta=meta)
    return success(request, data)


@router.post(
    "/password",
    summary="修改口令",
    description="校验当前口令后设置新口令，账号在两个会话池中的全部会话随之失效。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[PasswordChangeData],
    responses={401: {"model": ErrorResponse}, 422: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    dependencies=[Depends(auth_rate_limit)],
)
def password(
    payload: PasswordChangeRequest,
    request: Request,
    response: Response,
    ctx: AuthContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    """修改当前账号口令。"""
    revoked = change_password(
        db,
        ctx.user,
        current_password=payload.current_password,
        new_password=payload.new_password,
    )
    clear_session_cookie(response, SessionPool.USER)
    return success(request, {"password_changed": True, "revoked_sessions": revoked})


@router.post(
    "/forgot-password",
    summary="申请重置口令",
    description="对任何邮箱都返回相同响应，不暴露账号是否存在。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[ForgotPasswordData],
    responses={422: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    dependencies=[Depends(general_rate_limit)],
)
def forgot_password(
    payload: ForgotPasswordRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """申请口令重置令牌。"""
    request_reset(db, payload.email)
    return success(request, {"accepted": True, "message": FORGOT_PASSWORD_MESSAGE})


@router.post(
    "/reset-password",
    summary="兑换重置令牌",
    description="使用一次性重置令牌设置新口令；令牌只能兑换一次，成功后全部会话失效。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[ResetPasswordData],
    responses={400: {"model": ErrorResponse}, 422: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    dependencies=[Depends(auth_rate_limit)],
)
def reset_password(
    payload: ResetPasswordRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    """兑换重置令牌。"""
    user = redeem_reset(db, payload.token, payload.new_password)
    clear_session_cookie(response, SessionPool.USER)
    logger.info("password reset completed user_id=%s ip=%s", user.id, client_ip(request))
    return success(request, {"password_reset": True})
