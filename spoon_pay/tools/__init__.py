from .base import BaseTool, ToolResult
from .paid_resource import PaidResourceTool

__all__ = [
    "BaseTool",
    "PaidResourceTool",
    "ToolResult",
]
