"""FastAPI 应用入口点。"""

import logging

from fastapi import FastAPI

from safra_api.api.router import api_router
from safra_api.core.config import get_settings
from safra_api.exceptions import register_exception_handlers
from safra_api.middlewares import register_middlewares

settings = get_settings()


def _setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app() -> FastAPI:
    """创建并配置 FastAPI 应用实例。"""
    _setup_logging()
    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        debug=settings.app_debug,
        description=(
            "SafraReport 认证与会话服务。\n\n"
            "所有业务接口统一返回：`{request_id, data, meta}`。\n"
            "会话令牌通过 HttpOnly Cookie 下发，也可以 `Authorization: Bearer` 携带。\n"
            "前台与后台使用两个互相隔离的会话池。"
        ),
        openapi_tags=[
            {"name": "health", "description": "服务存活与就绪探针。"},
            {"name": "auth", "description": "前台账号注册、登录、会话与口令管理。"},
            {"name": "admin", "description": "后台登录、管理员会话与账号管理。"},
        ],
    )

    register_middlewares(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
