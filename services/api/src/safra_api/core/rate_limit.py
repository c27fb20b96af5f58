"""按 IP 的固定窗口请求频率限制。

优先使用 Redis 计数；未配置或 Redis 不可用时回退到进程内字典。
进程内计数仅为尽力而为的单进程缓存，重启即丢失，账号锁定始终以数据库为准。
"""

from datetime import datetime, timezone
import ipaddress
import logging
from threading import Lock

from fastapi import Request
from redis import Redis
from redis.exceptions import RedisError

from safra_api.core.config import get_settings
from safra_api.exceptions import AuthError
from safra_api.models.enums import AuthErrorCode

logger = logging.getLogger(__name__)

# key -> (窗口内计数, 窗口结束时间戳)
_LOCAL_COUNTERS: dict[str, tuple[int, int]] = {}
_LOCAL_LOCK = Lock()
_redis_client: Redis | None = None


def _now_ts() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def _get_redis() -> Redis | None:
    global _redis_client
    settings = get_settings()
    if not settings.redis_url:
        return None
    if _redis_client is None:
        _redis_client = Redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


def limiter_backend() -> str:
    """返回限流计数当前使用的后端：redis / local / local-fallback。"""
    redis_client = _get_redis()
    if redis_client is None:
        return "local"
    try:
        redis_client.ping()
    except RedisError:
        return "local-fallback"
    return "redis"


def _cleanup_local(now_ts: int) -> None:
    expired_keys = [key for key, (_, window_end) in _LOCAL_COUNTERS.items() if window_end <= now_ts]
    for key in expired_keys:
        _LOCAL_COUNTERS.pop(key, None)


def reset_local_counters() -> None:
    """清空进程内计数（测试与运维使用）。"""
    with _LOCAL_LOCK:
        _LOCAL_COUNTERS.clear()


def hit(key: str, *, window_seconds: int) -> int:
    """对指定键计数一次，返回当前窗口内的累计次数。"""
    settings = get_settings()
    redis_client = _get_redis()
    if redis_client is not None:
        full_key = f"{settings.rate_limit_prefix}{key}"
        try:
            pipe = redis_client.pipeline()
            pipe.incr(full_key)
            pipe.ttl(full_key)
            count, ttl = pipe.execute()
            # 新键或未设置过期时间的键补设窗口。
            if int(ttl) < 0:
                redis_client.expire(full_key, window_seconds)
            return int(count)
        except RedisError:
            # Redis 不可用时回退到本地计数，保证限流尽量可用。
            logger.warning("redis rate limiter unavailable, falling back to local counters")

    now_ts = _now_ts()
    with _LOCAL_LOCK:
        _cleanup_local(now_ts)
        count, window_end = _LOCAL_COUNTERS.get(key, (0, now_ts + window_seconds))
        count += 1
        _LOCAL_COUNTERS[key] = (count, window_end)
        return count


def _is_trusted_proxy(host: str, networks: list) -> bool:
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return any(address in network for network in networks)


def client_ip(request: Request) -> str:
    """返回用于限流与审计的客户端 IP。

    默认只认连接对端地址；对端属于受信任代理时才解析 X-Forwarded-For，
    从右向左跳过受信任代理，取第一个不受信任的地址。
    """
    peer = request.client.host if request.client else "unknown"
    networks = get_settings().trusted_proxy_networks
    forwarded = request.headers.get("x-forwarded-for")
    if not forwarded or not networks or not _is_trusted_proxy(peer, networks):
        return peer

    hops = [item.strip() for item in forwarded.split(",") if item.strip()]
    for hop in reversed(hops):
        if not _is_trusted_proxy(hop, networks):
            return hop
    return hops[0] if hops else peer


def rate_limit(scope: str, *, max_requests_setting: str):
    """生成按 IP + 作用域限流的路由依赖。

    `max_requests_setting` 为配置项名称，运行时读取，便于测试覆盖。
    """

    def _dep(request: Request) -> None:
        settings = get_settings()
        max_requests = int(getattr(settings, max_requests_setting))
        ip = client_ip(request)
        count = hit(f"{scope}:{ip}", window_seconds=settings.rate_limit_window_seconds)
        if count > max_requests:
            logger.warning("rate limited scope=%s ip=%s count=%s", scope, ip, count)
            raise AuthError(AuthErrorCode.RATE_LIMITED)

    return _dep


auth_rate_limit = rate_limit("auth", max_requests_setting="rate_limit_auth_max_requests")
general_rate_limit = rate_limit("general", max_requests_setting="rate_limit_general_max_requests")
