"""密码重置令牌生命周期。

令牌状态: issued -> redeemed（终态），issued -> superseded（新令牌签发，终态），
过期由 expires_at 推导。
"""

from datetime import timedelta
import logging
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from safra_api.core.config import get_settings
from safra_api.core.security import generate_token, hash_token, is_well_formed_token
from safra_api.exceptions import AuthError
from safra_api.models.auth import PasswordResetToken
from safra_api.models.enums import AuthErrorCode, ResetTokenStatus
from safra_api.models.user import User
from safra_api.services.credentials import get_user_by_email, set_password
from safra_api.utils.clock import utc_now

logger = logging.getLogger(__name__)


def deliver_reset_token(user: User, token: str) -> None:
    """投递重置链接。"""
    settings = get_settings()
    # TODO: 接入事务邮件服务后改为发送邮件，不再写日志。
    if settings.is_production:
        logger.info("password reset issued user_id=%s", user.id)
        return
    link = settings.auth_reset_url_template.format(token=token)
    logger.info("password reset issued user_id=%s link=%s", user.id, link)


def request_reset(db: Session, email: str) -> str | None:
    """申请重置口令。

    对调用方返回值仅供投递与测试使用，接口层对任何邮箱都返回相同响应。
    邮箱存在时签发新令牌，并使该账号之前未兑换的令牌失效。
    """
    settings = get_settings()
    user = get_user_by_email(db, email)
    # 无论邮箱是否存在都生成令牌并计算摘要，保持两条路径耗时接近。
    token = generate_token()
    token_hash = hash_token(token)
    if user is None or not user.is_active:
        logger.info("password reset requested for unknown or inactive account")
        return None

    now = utc_now()
    db.execute(
        update(PasswordResetToken)
        .where(PasswordResetToken.user_id == user.id)
        .where(PasswordResetToken.status == ResetTokenStatus.ISSUED)
        .values(status=ResetTokenStatus.SUPERSEDED)
        .execution_options(synchronize_session=False)
    )
    db.add(
        PasswordResetToken(
            id=uuid4(),
            user_id=user.id,
            token_hash=token_hash,
            status=ResetTokenStatus.ISSUED,
            expires_at=now + timedelta(seconds=settings.auth_reset_token_ttl_seconds),
            created_at=now,
        )
    )
    db.commit()
    deliver_reset_token(user, token)
    return token


def redeem_reset(db: Session, token: str, new_password: str) -> User:
    """兑换重置令牌：轮换口令、标记已兑换、使全部会话失效。"""
    if not is_well_formed_token(token):
        raise AuthError(AuthErrorCode.INVALID_OR_EXPIRED_TOKEN)

    now = utc_now()
    token_hash = hash_token(token)
    # 以单条条件 UPDATE 抢占令牌，并发兑换时只有一个请求能命中。
    claimed = db.execute(
        update(PasswordResetToken)
        .where(PasswordResetToken.token_hash == token_hash)
        .where(PasswordResetToken.status == ResetTokenStatus.ISSUED)
        .where(PasswordResetToken.expires_at > now)
        .values(status=ResetTokenStatus.REDEEMED, redeemed_at=now)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        db.rollback()
        raise AuthError(AuthErrorCode.INVALID_OR_EXPIRED_TOKEN)

    record = db.execute(
        select(PasswordResetToken).where(PasswordResetToken.token_hash == token_hash)
    ).scalar_one()
    user = db.get(User, record.user_id)
    if user is None or not user.is_active:
        db.rollback()
        raise AuthError(AuthErrorCode.INVALID_OR_EXPIRED_TOKEN)

    revoked = set_password(db, user, new_password)
    db.commit()
    logger.info("password reset redeemed user_id=%s revoked_sessions=%s", user.id, revoked)
    return user
