from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Tool execution contracts and the in-process tool registry.
"""

from .errors import (
    ToolAlreadyRegisteredError,
    ToolError,
    ToolNotFoundError,
    ToolValidationError,
)
from .registry import RegisteredTool, ToolRegistry, as_async
from .types import (
    ExternalApiCost,
    SandboxSession,
    SandboxSessionManager,
    SandboxSwitch,
    ToolCallResult,
    ToolContext,
    ToolExecutor,
    ToolResultMeta,
)

__all__ = [
    "ExternalApiCost",
    "RegisteredTool",
    "SandboxSession",
    "SandboxSessionManager",
    "SandboxSwitch",
    "ToolAlreadyRegisteredError",
    "ToolCallResult",
    "ToolContext",
    "ToolError",
    "ToolExecutor",
    "ToolNotFoundError",
    "ToolRegistry",
    "ToolResultMeta",
    "ToolValidationError",
    "as_async",
]
