import os
from collections.abc import Callable, Generator

# 应用模块导入时即按配置创建引擎，需在导入前指定测试库与低工作因子。
os.environ.setdefault("SAFRA_DATABASE_URL", "sqlite+pysqlite://")
os.environ.setdefault("SAFRA_AUTH_BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import safra_api.models  # noqa: F401,E402
from safra_api.core.config import get_settings
from safra_api.core.rate_limit import reset_local_counters
from safra_api.db.session import get_db
from safra_api.main import app
from safra_api.models.base import Base
from safra_api.models.enums import PrincipalRole
from safra_api.models.user import User
from safra_api.services.credentials import register_user

DEFAULT_PASSWORD = "Passw0rd!"


@pytest.fixture(autouse=True)
def auth_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("SAFRA_AUTH_BCRYPT_ROUNDS", "4")
    monkeypatch.setenv("SAFRA_APP_ENV", "test")
    monkeypatch.delenv("SAFRA_REDIS_URL", raising=False)
    get_settings.cache_clear()
    reset_local_counters()
    yield
    reset_local_counters()
    get_settings.cache_clear()


@pytest.fixture
def session_factory() -> Generator[sessionmaker, None, None]:
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    def _make(
        email: str = "reader@example.com",
        password: str = DEFAULT_PASSWORD,
        role: str = PrincipalRole.USER,
        is_active: bool = True,
    ) -> User:
        user = register_user(db_session, email=email, password=password)
        user.role = role
        user.is_active = is_active
        db_session.commit()
        return user

    return _make


@pytest.fixture
def api_client(session_factory: sessionmaker) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.rollback()
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
