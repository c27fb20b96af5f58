"""服务端会话签发、校验与失效。

职责:
1. 为通过凭据校验的账号签发不透明会话令牌（库中只存摘要）。
2. 按会话池校验令牌：用户池只查 user_sessions，管理池只查 admin_sessions。
3. 单个会话失效（登出）与账号全部会话失效（改口令 / 重置口令）。
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import NamedTuple
from uuid import UUID, uuid4

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from safra_api.core.config import get_settings
from safra_api.core.security import generate_token, hash_token, is_well_formed_token
from safra_api.models.auth import AdminSession, UserSession
from safra_api.models.enums import ADMIN_ROLES, SessionPool
from safra_api.models.user import User
from safra_api.utils.clock import as_utc, utc_now

logger = logging.getLogger(__name__)

SessionRecord = UserSession | AdminSession

_POOL_MODELS: dict[SessionPool, type[UserSession] | type[AdminSession]] = {
    SessionPool.USER: UserSession,
    SessionPool.ADMIN: AdminSession,
}


@dataclass
class ClientMeta:
    """签发会话时记录的客户端信息。"""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class IssuedSession:
    """新签发的会话，明文令牌只在此处出现一次。"""

    session_id: UUID
    pool: SessionPool
    token: str
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        return max(0, int((self.expires_at - utc_now()).total_seconds()))


class ValidatedSession(NamedTuple):
    """校验通过的会话及其账号。"""

    user: User
    record: SessionRecord


def session_ttl(pool: SessionPool) -> timedelta:
    """返回会话池对应的有效期，两个池独立配置。"""
    settings = get_settings()
    if pool == SessionPool.ADMIN:
        return timedelta(seconds=settings.auth_admin_session_ttl_seconds)
    return timedelta(seconds=settings.auth_user_session_ttl_seconds)


def create_session(
    db: Session,
    user: User,
    pool: SessionPool,
    client_meta: ClientMeta | None = None,
) -> IssuedSession:
    """签发会话并写入对应会话池，提交由调用方负责。"""
    model = _POOL_MODELS[pool]
    meta = client_meta or ClientMeta()
    token = generate_token()
    now = utc_now()
    expires_at = now + session_ttl(pool)
    record = model(
        id=uuid4(),
        token_hash=hash_token(token),
        user_id=user.id,
        expires_at=expires_at,
        ip_address=meta.ip_address[:45] if meta.ip_address else None,
        user_agent=meta.user_agent,
        created_at=now,
    )
    db.add(record)
    db.flush()
    return IssuedSession(session_id=record.id, pool=pool, token=token, expires_at=expires_at)


def validate_session(db: Session, token: str | None, pool: SessionPool) -> ValidatedSession | None:
    """校验会话令牌。

    令牌缺失、格式异常、不存在、已过期或账号不可用时返回 None，不抛异常。
    管理池额外要求账号当前角色仍属于后台角色。
    """
    if not token or not is_well_formed_token(token):
        return None

    model = _POOL_MODELS[pool]
    now = utc_now()
    record = db.execute(
        select(model).where(model.token_hash == hash_token(token)).where(model.expires_at > now)
    ).scalar_one_or_none()
    if record is None or as_utc(record.expires_at) <= now:
        return None

    user = db.get(User, record.user_id)
    if user is None or not user.is_active:
        return None
    if pool == SessionPool.ADMIN and user.role not in ADMIN_ROLES:
        return None
    return ValidatedSession(user=user, record=record)


def invalidate_session(db: Session, token: str | None, pool: SessionPool) -> bool:
    """删除指定会话，幂等；返回是否确实删除了会话。"""
    if not token or not is_well_formed_token(token):
        return False
    model = _POOL_MODELS[pool]
    result = db.execute(delete(model).where(model.token_hash == hash_token(token)))
    return result.rowcount > 0


def invalidate_all_sessions_for(db: Session, user_id: UUID) -> int:
    """删除账号在两个会话池中的全部会话，返回删除数量。"""
    revoked = 0
    for model in _POOL_MODELS.values():
        result = db.execute(delete(model).where(model.user_id == user_id))
        revoked += result.rowcount
    if revoked:
        logger.info("revoked all sessions user_id=%s count=%s", user_id, revoked)
    return revoked


def rotate_session(
    db: Session,
    token: str | None,
    pool: SessionPool,
    client_meta: ClientMeta | None = None,
) -> tuple[User, IssuedSession] | None:
    """用有效旧会话换取新会话，旧令牌立即失效。"""
    validated = validate_session(db, token, pool)
    if validated is None:
        return None
    db.delete(validated.record)
    issued = create_session(db, validated.user, pool, client_meta)
    return validated.user, issued
