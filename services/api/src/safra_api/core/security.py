"""口令哈希与会话令牌工具。"""

from functools import lru_cache
import hashlib
import re
import secrets

import bcrypt

from safra_api.core.config import get_settings

# bcrypt 只使用前 72 字节口令。
_BCRYPT_MAX_BYTES = 72
_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_\-]{16,256}$")


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    """使用 bcrypt 生成带盐口令哈希。"""
    settings = get_settings()
    salt = bcrypt.gensalt(rounds=settings.auth_bcrypt_rounds)
    return bcrypt.hashpw(_password_bytes(password), salt).decode("ascii")


def verify_password(password: str, password_hash: str) -> bool:
    """校验口令是否匹配，比较由 bcrypt 内部以恒定时间完成。"""
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("ascii"))
    except (ValueError, UnicodeEncodeError):
        return False


@lru_cache
def _dummy_hash(rounds: int) -> str:
    return bcrypt.hashpw(b"safra-dummy-password", bcrypt.gensalt(rounds=rounds)).decode("ascii")


def burn_password_check(password: str) -> None:
    """对哑哈希执行一次同等代价的校验，用于抹平“账号不存在”分支的耗时差异。"""
    verify_password(password, _dummy_hash(get_settings().auth_bcrypt_rounds))


def generate_token() -> str:
    """生成不可猜测的不透明令牌。"""
    return secrets.token_urlsafe(get_settings().auth_session_token_bytes)


def hash_token(token: str) -> str:
    """令牌落库前统一做 SHA-256 摘要，数据库中不保存明文。"""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def is_well_formed_token(token: str | None) -> bool:
    """判断令牌格式是否可能合法，格式异常直接视为未认证。"""
    return bool(token) and _TOKEN_PATTERN.fullmatch(token) is not None
