"""数据库引擎与会话管理。"""

from collections.abc import Generator, Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from safra_api.core.config import get_settings

settings = get_settings()


def _engine_options(database_url: str) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        # 本地调试使用 SQLite 时允许跨线程复用连接（路由在线程池中执行）。
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.database_url, **_engine_options(settings.database_url))
# 路由层通过依赖注入获取短生命周期会话，提交由服务层显式控制。
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)


def get_db() -> Generator[Session, None, None]:
    """为每个请求提供独立数据库会话，未提交的改动在请求结束时回滚。"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """命令行工具使用的事务会话，正常退出提交，异常回滚。"""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
