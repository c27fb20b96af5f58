"""应用中间件注册。"""

import logging
import re
from time import perf_counter
import uuid

from fastapi import FastAPI, Request

logger = logging.getLogger(__name__)

_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9\-]{8,64}$")


async def request_id_middleware(request: Request, call_next):
    """注入请求追踪 ID 与耗时响应头；上游网关传入合法的 X-Request-Id 时沿用。"""
    incoming = request.headers.get("x-request-id", "")
    request.state.request_id = incoming if _REQUEST_ID_PATTERN.fullmatch(incoming) else str(uuid.uuid4())
    request.state.request_started_at = perf_counter()
    response = await call_next(request)
    elapsed_ms = round((perf_counter() - request.state.request_started_at) * 1000, 2)
    response.headers["X-Request-Id"] = request.state.request_id
    response.headers["X-Process-Time-Ms"] = str(elapsed_ms)
    logger.debug(
        "%s %s status=%s elapsed_ms=%s request_id=%s",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        request.state.request_id,
    )
    return response


async def no_store_middleware(request: Request, call_next):
    """认证接口的响应携带会话令牌，禁止任何中间缓存。"""
    response = await call_next(request)
    if "/auth/" in request.url.path or "/admin/" in request.url.path:
        response.headers["Cache-Control"] = "no-store"
        response.headers["Pragma"] = "no-cache"
    return response


def register_middlewares(app: FastAPI) -> None:
    """集中注册中间件，后注册的先执行。"""
    app.middleware("http")(no_store_middleware)
    app.middleware("http")(request_id_middleware)
