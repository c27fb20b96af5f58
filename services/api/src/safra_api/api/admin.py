"""后台认证与账号管理接口。

后台会话与前台会话完全隔离：独立的表、独立的 Cookie、独立的有效期。
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from safra_api.api.auth import login_for_pool, logout_for_pool, me_payload, refresh_for_pool
from safra_api.core.rate_limit import auth_rate_limit
from safra_api.db.session import get_db
from safra_api.dependencies import (
    AuthContext,
    bearer_scheme,
    get_admin_context,
    get_client_meta,
    require_admin_roles,
)
from safra_api.models.enums import ADMIN_ROLES, SessionPool
from safra_api.models.user import User
from safra_api.schemas.admin import AccountUnlockData, RoleUpdateData, RoleUpdateRequest
from safra_api.schemas.auth import AuthLoginData, AuthLoginRequest, AuthLogoutData, AuthMeData
from safra_api.schemas.common import ErrorResponse, SuccessResponse
from safra_api.services import (
    ACCOUNT_UNLOCK_ROLES,
    ROLE_MANAGER_ROLES,
    ClientMeta,
    ensure_role_change_allowed,
    unlock_account,
)
from safra_api.utils.response import success

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_target_user(db: Session, user_id: UUID) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "USER_NOT_FOUND", "message": "账号不存在。"},
        )
    return user


@router.post(
    "/login",
    summary="后台登录",
    description="仅后台角色可登录，签发管理员会话；普通账号使用正确口令也返回认证失败。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthLoginData],
    responses={
        401: {"model": ErrorResponse},
        423: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
    dependencies=[Depends(auth_rate_limit)],
)
def admin_login(
    payload: AuthLoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    meta: ClientMeta = Depends(get_client_meta),
):
    """后台账号登录。"""
    data = login_for_pool(
        db,
        response,
        payload,
        pool=SessionPool.ADMIN,
        meta=meta,
        allowed_roles=ADMIN_ROLES,
    )
    return success(request, data)


@router.post(
    "/logout",
    summary="后台登出",
    description="删除当前管理员会话并清除后台 Cookie；重复调用同样返回成功。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthLogoutData],
    responses={500: {"model": ErrorResponse}},
)
def admin_logout(
    request: Request,
    response: Response,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
):
    """后台登出。"""
    data = logout_for_pool(db, request, response, pool=SessionPool.ADMIN, credentials=credentials)
    return success(request, data)


@router.get(
    "/me",
    summary="获取当前管理员",
    description="返回当前管理员会话对应的账号信息。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthMeData],
    responses={401: {"model": ErrorResponse}},
)
def admin_me(request: Request, ctx: AuthContext = Depends(get_admin_context)):
    """查询当前管理员。"""
    return success(request, me_payload(ctx))


@router.post(
    "/refresh",
    summary="轮换管理员会话",
    description="用当前有效管理员会话换取新令牌，旧令牌立即失效。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthLoginData],
    responses={401: {"model": ErrorResponse}},
)
def admin_refresh(
    request: Request,
    response: Response,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
    meta: ClientMeta = Depends(get_client_meta),
):
    """轮换管理员会话令牌。"""
    data = refresh_for_pool(db, request, response, pool=SessionPool.ADMIN, credentials=credentials, meta=meta)
    return success(request, data)


@router.patch(
    "/users/{user_id}/role",
    summary="变更账号角色",
    description="管理员可变更账号角色；授予或回收 admin/super_admin 仅限超级管理员，且不能修改自己。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[RoleUpdateData],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def update_user_role(
    user_id: UUID,
    payload: RoleUpdateRequest,
    request: Request,
    ctx: AuthContext = Depends(require_admin_roles(*ROLE_MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    """变更账号角色。"""
    target = _get_target_user(db, user_id)
    ensure_role_change_allowed(ctx.user, target, payload.role)

    previous_role = target.role
    target.role = payload.role
    db.commit()
    logger.info(
        "role changed actor_id=%s target_id=%s from=%s to=%s",
        ctx.user.id,
        target.id,
        previous_role,
        payload.role,
    )
    return success(request, {"user_id": target.id, "previous_role": previous_role, "role": target.role})


@router.post(
    "/users/{user_id}/unlock",
    summary="解除账号锁定",
    description="清零失败计数并解除锁定，不修改口令。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AccountUnlockData],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def unlock_user(
    user_id: UUID,
    request: Request,
    ctx: AuthContext = Depends(require_admin_roles(*ACCOUNT_UNLOCK_ROLES)),
    db: Session = Depends(get_db),
):
    """解除账号锁定。"""
    target = _get_target_user(db, user_id)
    previously_locked_until = target.locked_until
    unlock_account(db, target)
    db.commit()
    logger.info("account unlocked actor_id=%s target_id=%s", ctx.user.id, target.id)
    return success(
        request,
        {"user_id": target.id, "unlocked": True, "previously_locked_until": previously_locked_until},
    )
