"""凭据校验与登录锁定。

职责:
1. 校验邮箱口令，账号不存在与口令错误返回同一错误且耗时相当。
2. 口令错误时以单条条件 UPDATE 原子自增失败计数，达到阈值即锁定。
3. 记录每次登录尝试，并据此做按 IP 的失败次数限制。
4. 注册、修改口令、轮换口令与解除锁定。
"""

from collections.abc import Collection
from datetime import datetime, timedelta
import logging
from uuid import uuid4

from fastapi import HTTPException, status
from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from safra_api.core.config import get_settings
from safra_api.core.security import burn_password_check, hash_password, verify_password
from safra_api.exceptions import AuthError
from safra_api.models.auth import LoginAttempt
from safra_api.models.enums import AuthErrorCode, PrincipalRole, SessionPool
from safra_api.models.user import User
from safra_api.services.sessions import invalidate_all_sessions_for
from safra_api.utils.clock import as_utc, utc_now

logger = logging.getLogger(__name__)


def normalize_email(value: str) -> str:
    """标准化邮箱字段（去空格 + 小写）。"""
    return value.strip().lower()


def get_user_by_email(db: Session, email: str) -> User | None:
    """按规范化邮箱查询账号。"""
    return db.execute(select(User).where(User.email == normalize_email(email))).scalar_one_or_none()


def is_locked(user: User, now: datetime | None = None) -> bool:
    """判断账号当前是否处于锁定期。"""
    if user.locked_until is None:
        return False
    return as_utc(user.locked_until) > (now or utc_now())


def _record_attempt(
    db: Session,
    *,
    email: str,
    ip_address: str,
    pool: SessionPool,
    success: bool,
    now: datetime,
) -> None:
    db.add(
        LoginAttempt(
            id=uuid4(),
            email=email[:256],
            ip_address=ip_address[:45],
            pool=pool,
            success=success,
            attempted_at=now,
        )
    )


def check_ip_throttle(db: Session, ip_address: str) -> None:
    """同一 IP 在窗口内失败次数达到阈值时拒绝继续尝试。"""
    settings = get_settings()
    window_start = utc_now() - timedelta(seconds=settings.auth_ip_failure_window_seconds)
    failures = db.execute(
        select(func.count())
        .select_from(LoginAttempt)
        .where(LoginAttempt.ip_address == ip_address[:45])
        .where(LoginAttempt.success.is_(False))
        .where(LoginAttempt.attempted_at >= window_start)
    ).scalar_one()
    if failures >= settings.auth_ip_failure_threshold:
        logger.warning("ip throttled ip=%s failures=%s", ip_address, failures)
        raise AuthError(AuthErrorCode.RATE_LIMITED)


def _register_failure(db: Session, user: User, now: datetime) -> None:
    """原子自增失败计数，跨过阈值时同一语句内写入锁定截止时间。"""
    settings = get_settings()
    lock_until = now + timedelta(minutes=settings.auth_lockout_minutes)
    # SET 右侧引用的是更新前的列值，因此 +1 后与阈值比较。
    result = db.execute(
        update(User)
        .where(User.id == user.id)
        .values(
            failed_login_attempts=User.failed_login_attempts + 1,
            locked_until=case(
                (User.failed_login_attempts + 1 >= settings.auth_max_failed_attempts, lock_until),
                else_=User.locked_until,
            ),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("failed-attempt counter not updated user_id=%s", user.id)


def verify_credentials(
    db: Session,
    email: str,
    password: str,
    *,
    ip_address: str = "unknown",
    pool: SessionPool = SessionPool.USER,
    allowed_roles: Collection[str] | None = None,
) -> User:
    """校验凭据并返回账号。

    成功时清零失败计数并刷新最近登录时间，提交由调用方负责；
    失败路径在抛出 AuthError 前自行提交计数与尝试记录。
    """
    normalized_email = normalize_email(email)
    now = utc_now()
    user = db.execute(select(User).where(User.email == normalized_email)).scalar_one_or_none()

    if user is not None and is_locked(user, now):
        # 锁定期内不校验口令。
        _record_attempt(db, email=normalized_email, ip_address=ip_address, pool=pool, success=False, now=now)
        db.commit()
        logger.warning("login rejected, account locked user_id=%s ip=%s", user.id, ip_address)
        raise AuthError(AuthErrorCode.ACCOUNT_LOCKED)

    if user is None:
        burn_password_check(password)
        password_ok = False
    else:
        password_ok = verify_password(password, user.password_hash)

    if user is not None and not password_ok:
        _register_failure(db, user, now)

    eligible = (
        user is not None
        and user.is_active
        and (allowed_roles is None or user.role in allowed_roles)
    )
    if not password_ok or not eligible:
        _record_attempt(db, email=normalized_email, ip_address=ip_address, pool=pool, success=False, now=now)
        db.commit()
        logger.info("login failed pool=%s ip=%s", pool, ip_address)
        raise AuthError(AuthErrorCode.INVALID_CREDENTIALS)

    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login_at = now
    _record_attempt(db, email=normalized_email, ip_address=ip_address, pool=pool, success=True, now=now)
    db.flush()
    return user


def register_user(db: Session, *, email: str, password: str, display_name: str | None = None) -> User:
    """注册普通账号。"""
    normalized_email = normalize_email(email)
    if get_user_by_email(db, normalized_email) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "code": "CONFLICT",
                "message": "该邮箱已注册。",
                "details": {"reason": "email_already_registered"},
            },
        )

    now = utc_now()
    user = User(
        id=uuid4(),
        email=normalized_email,
        password_hash=hash_password(password),
        display_name=(display_name or normalized_email.split("@")[0]).strip()[:128],
        role=PrincipalRole.USER,
        is_active=True,
        failed_login_attempts=0,
        password_updated_at=now,
    )
    db.add(user)
    db.flush()
    logger.info("user registered user_id=%s", user.id)
    return user


def set_password(db: Session, user: User, new_password: str) -> int:
    """轮换口令哈希、清除锁定，并使账号全部会话失效；返回失效会话数。"""
    user.password_hash = hash_password(new_password)
    user.password_updated_at = utc_now()
    user.failed_login_attempts = 0
    user.locked_until = None
    db.flush()
    return invalidate_all_sessions_for(db, user.id)


def change_password(db: Session, user: User, *, current_password: str, new_password: str) -> int:
    """已登录账号修改口令，当前口令错误计入失败次数。

    账号处于锁定期时不校验当前口令，直接拒绝。
    """
    if is_locked(user):
        logger.warning("password change rejected, account locked user_id=%s", user.id)
        raise AuthError(AuthErrorCode.ACCOUNT_LOCKED)

    if not verify_password(current_password, user.password_hash):
        _register_failure(db, user, utc_now())
        db.commit()
        logger.info("password change rejected user_id=%s", user.id)
        raise AuthError(AuthErrorCode.INVALID_CREDENTIALS)

    revoked = set_password(db, user, new_password)
    db.commit()
    logger.info("password changed user_id=%s revoked_sessions=%s", user.id, revoked)
    return revoked


def unlock_account(db: Session, user: User) -> None:
    """管理员显式解除账号锁定。"""
    user.failed_login_attempts = 0
    user.locked_until = None
    db.flush()
