from tools.context import AppContext
from tools.registry import ToolDefinition, ToolRegistry, build_registry, register_tools
from tools.results import Failure, Success, render_result

__all__ = [
    "AppContext",
    "Failure",
    "Success",
    "ToolDefinition",
    "ToolRegistry",
    "build_registry",
    "register_tools",
    "render_result",
]
