"""路由模块导出集合。"""

from . import admin, auth, health

__all__ = ["admin", "auth", "health"]
