"""后台管理员引导命令。

系统中不存在任何内置管理员账号；首个管理员只能由运维通过本命令创建或提升。

示例:
  safra-bootstrap-admin --create-schema --email ops@example.com --role super_admin
"""

import logging

import click
from sqlalchemy.orm import Session

from safra_api.models import User
from safra_api.models.enums import ADMIN_ROLES, PrincipalRole
from safra_api.services.credentials import get_user_by_email, register_user, set_password

logger = logging.getLogger(__name__)


def bootstrap_admin(db: Session, *, email: str, password: str, role: str) -> tuple[User, bool]:
    """创建或提升后台账号，返回 (账号, 是否新建)，提交由调用方负责。

    已存在的账号会被提升为指定角色并轮换口令，原有会话全部失效。
    """
    if role not in ADMIN_ROLES:
        raise ValueError(f"role must be one of: {', '.join(sorted(ADMIN_ROLES))}")

    user = get_user_by_email(db, email)
    created = user is None
    if user is None:
        user = register_user(db, email=email, password=password)
    else:
        set_password(db, user, password)
    user.role = PrincipalRole(role)
    user.is_active = True
    db.flush()
    logger.info("admin bootstrapped user_id=%s role=%s created=%s", user.id, role, created)
    return user, created


@click.command()
@click.option("--email", required=True, help="管理员登录邮箱")
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    confirmation_prompt=True,
    help="管理员口令（缺省时交互输入）",
)
@click.option(
    "--role",
    type=click.Choice(sorted(role.value for role in ADMIN_ROLES), case_sensitive=False),
    default=PrincipalRole.SUPER_ADMIN.value,
    show_default=True,
    help="授予的后台角色",
)
@click.option("--create-schema", is_flag=True, default=False, help="先按模型创建缺失的数据表")
def main(email: str, password: str, role: str, create_schema: bool) -> None:
    """创建或提升 SafraReport 后台管理员。"""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    if len(password) < 8:
        raise click.BadParameter("password must be at least 8 characters", param_hint="--password")

    # 延迟导入，避免 --help 时即按配置创建数据库引擎。
    from safra_api.models.base import Base
    from safra_api.db.session import engine, session_scope

    if create_schema:
        Base.metadata.create_all(bind=engine)
        click.echo("schema ready")

    with session_scope() as db:
        user, created = bootstrap_admin(db, email=email, password=password, role=role.lower())
        action = "created" if created else "updated"
        click.echo(f"admin {action}: {user.email} ({user.role})")


if __name__ == "__main__":
    main()
