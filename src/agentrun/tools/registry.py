from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

In-process tool registry implementing the `ToolExecutor` contract.

Handlers may be sync or async and take `(args)` or `(args, ctx)`. When an
`args_model` is given, raw arguments are validated with pydantic before the
handler runs. Every failure is returned as a failed `ToolCallResult`; the
registry never raises into the run loop.
"""

import asyncio
import functools
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ValidationError

from ..llms.types import ToolDefinition
from .errors import ToolAlreadyRegisteredError, ToolNotFoundError, ToolValidationError
from .types import ToolCallResult, ToolContext

logger = logging.getLogger(__name__)

ToolFn = Union[Callable[..., Awaitable[Any]], Callable[..., Any]]


def as_async(fn: ToolFn) -> Callable[..., Awaitable[Any]]:
    """Wrap sync handlers so they run in a worker thread."""
    if inspect.iscoroutinefunction(fn):
        return fn  # type: ignore[return-value]

    async def _wrapped(*args: Any, **kwargs: Any) -> Any:
        return await asyncio.to_thread(functools.partial(fn, *args, **kwargs))

    return _wrapped


def _takes_context(fn: Callable[..., Any]) -> bool:
    params = list(inspect.signature(fn).parameters.values())
    if any(p.kind in (p.VAR_KEYWORD, p.VAR_POSITIONAL) for p in params):
        raise ToolValidationError(
            f"Tool function '{getattr(fn, '__name__', 'unknown')}' cannot have *args or **kwargs."
        )
    if len(params) == 1:
        return False
    if len(params) == 2:
        return True
    raise ToolValidationError(
        f"Tool function '{getattr(fn, '__name__', 'unknown')}' must take (args) or (args, ctx)."
    )


def _stringify(output: Any) -> str:
    if output is None:
        return ""
    if isinstance(output, str):
        return output
    if isinstance(output, BaseModel):
        return output.model_dump_json()
    try:
        return json.dumps(output, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(output)


@dataclass(frozen=True, slots=True)
class RegisteredTool:
    name: str
    description: str
    fn: Callable[..., Awaitable[Any]]
    args_model: Optional[Type[BaseModel]]
    takes_context: bool

    def definition(self) -> ToolDefinition:
        if self.args_model is not None:
            schema = dict(self.args_model.model_json_schema())
        else:
            schema = {}
        schema.setdefault("type", "object")
        schema.setdefault("properties", {})
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": schema,
            },
        }


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: Dict[str, RegisteredTool] = {}

    def register(
        self,
        fn: ToolFn,
        *,
        name: str | None = None,
        description: str | None = None,
        args_model: Type[BaseModel] | None = None,
    ) -> RegisteredTool:
        tool_name = name or getattr(fn, "__name__", "")
        if not tool_name:
            raise ToolValidationError("Tool name must be non-empty")
        if tool_name in self._tools:
            raise ToolAlreadyRegisteredError(f"Tool already registered: {tool_name}")

        entry = RegisteredTool(
            name=tool_name,
            description=description or (inspect.getdoc(fn) or "").strip(),
            fn=as_async(fn),
            args_model=args_model,
            takes_context=_takes_context(fn),
        )
        self._tools[tool_name] = entry
        return entry

    def tool(
        self,
        *,
        name: str | None = None,
        description: str | None = None,
        args_model: Type[BaseModel] | None = None,
    ) -> Callable[[ToolFn], ToolFn]:
        """Decorator form of `register`; returns the original function."""

        def _decorate(fn: ToolFn) -> ToolFn:
            self.register(fn, name=name, description=description, args_model=args_model)
            return fn

        return _decorate

    def get(self, name: str) -> RegisteredTool:
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFoundError(f"Unknown tool: {name}") from None

    def names(self) -> List[str]:
        return sorted(self._tools)

    def definitions(self) -> List[ToolDefinition]:
        """Export OpenAI-compatible function tool definitions."""
        return [self._tools[n].definition() for n in self.names()]

    async def execute(
        self,
        name: str,
        arguments: Dict[str, Any],
        context: ToolContext,
    ) -> ToolCallResult:
        try:
            entry = self.get(name)
        except ToolNotFoundError as e:
            return ToolCallResult.failure(str(e))

        args: Any = arguments
        if entry.args_model is not None:
            try:
                args = entry.args_model.model_validate(arguments)
            except ValidationError as e:
                return ToolCallResult.failure(f"Invalid arguments for tool '{name}': {e}")

        try:
            if entry.takes_context:
                output = await entry.fn(args, context)
            else:
                output = await entry.fn(args)
        except Exception as e:
            logger.debug("Tool %s raised: %s", name, e, exc_info=True)
            return ToolCallResult.failure(f"Error executing tool '{name}': {e}")

        if isinstance(output, ToolCallResult):
            return output
        return ToolCallResult(success=True, output=_stringify(output))
