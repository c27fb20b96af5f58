"""健康检查接口。"""

from sqlalchemy import text
from sqlalchemy.orm import Session

from fastapi import APIRouter, Depends, Request, status

from safra_api.core.rate_limit import limiter_backend
from safra_api.db.session import get_db
from safra_api.schemas.common import ErrorResponse, HealthStatusData, SuccessResponse
from safra_api.utils.response import success

router = APIRouter(prefix="/health", tags=["health"])


@router.get(
    "/live",
    summary="存活探针",
    description="仅检测进程存活，不访问数据库与 Redis。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={500: {"model": ErrorResponse}},
)
def live(request: Request):
    return success(request, {"status": "ok", "checks": {}})


@router.get(
    "/ready",
    summary="就绪探针",
    description=(
        "凭据与会话都存放在数据库中，数据库不可用时返回 500。"
        "Redis 仅承担请求限流计数，不可用时服务回退到进程内计数并报告 degraded。"
    ),
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={500: {"model": ErrorResponse}},
)
def ready(request: Request, db: Session = Depends(get_db)):
    """数据库探活失败时由存储异常处理器返回通用 500。"""
    db.execute(text("select 1"))
    backend = limiter_backend()
    overall = "degraded" if backend == "local-fallback" else "ready"
    return success(request, {"status": overall, "checks": {"database": "ok", "rate_limiter": backend}})
