"""后台账号管理请求与响应结构。"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from safra_api.models.enums import PrincipalRole
from safra_api.schemas.common import BaseSchema


class RoleUpdateRequest(BaseModel):
    """账号角色变更请求。"""

    role: PrincipalRole = Field(description="目标角色。", examples=["editor"])


class RoleUpdateData(BaseSchema):
    """角色变更结果结构。"""

    user_id: UUID = Field(description="账号 ID。")
    previous_role: str = Field(description="变更前角色。")
    role: str = Field(description="变更后角色。")


class AccountUnlockData(BaseSchema):
    """解除锁定结果结构。"""

    user_id: UUID = Field(description="账号 ID。")
    unlocked: bool = Field(description="是否已解除锁定。")
    previously_locked_until: datetime | None = Field(default=None, description="解除前的锁定截止时间。")
