"""Tool registry: maps tool names to async handlers and their parameter models."""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import pydantic

from src.memory.errors import MemoryStoreError
from src.tools.base import ToolParams, ToolResult

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    Handler = Callable[..., Awaitable[ToolResult]]

logger = logging.getLogger(__name__)

_LOG_VALUE_CHARS = 80


def _loggable(arguments: dict[str, Any]) -> dict[str, Any]:
    """Shorten long string arguments (message bodies) for log lines."""
    return {
        key: value[:_LOG_VALUE_CHARS] + "..."
        if isinstance(value, str) and len(value) > _LOG_VALUE_CHARS
        else value
        for key, value in arguments.items()
    }


@dataclass
class ToolDef:
    name: str
    description: str
    category: str
    handler: Handler
    params_model: type[ToolParams] | None = None

    def bind(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Validate *arguments* against the params model, filling defaults.

        Raises:
            pydantic.ValidationError: the arguments do not fit the model.
        """
        if self.params_model is None:
            return dict(arguments)
        return self.params_model.model_validate(arguments).model_dump()

    def schema(self) -> dict[str, Any]:
        if self.params_model is None:
            input_schema: dict[str, Any] = {"type": "object", "properties": {}}
        else:
            input_schema = self.params_model.model_json_schema()
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": input_schema,
        }


class ToolRegistry:
    """Catalog of callable tools.

    Handlers are registered with the :meth:`tool` decorator and invoked by
    name through :meth:`execute`, which never raises: every outcome comes
    back as a :class:`ToolResult`.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDef] = {}

    def tool(
        self,
        *,
        name: str,
        description: str,
        category: str,
        params_model: type[ToolParams] | None = None,
    ) -> Callable[[Handler], Handler]:
        """Register the decorated async function under *name*."""

        def decorator(fn: Handler) -> Handler:
            if not inspect.iscoroutinefunction(fn):
                msg = f"Tool handler '{name}' must be an async function"
                raise TypeError(msg)
            self._tools[name] = ToolDef(name, description, category, fn, params_model)
            return fn

        return decorator

    def get(self, name: str) -> ToolDef | None:
        return self._tools.get(name)

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def get_schemas(self, category: str | None = None) -> list[dict[str, Any]]:
        """Schemas for every tool, or only those in *category*."""
        return [
            t.schema()
            for t in self._tools.values()
            if category is None or t.category == category
        ]

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Run a tool by name.

        Invalid arguments and memory errors come back as error results tagged
        with their kind. Anything else is logged with a traceback and reported
        without details.
        """
        tool_def = self._tools.get(name)
        if tool_def is None:
            return ToolResult(error=f"Unknown tool: {name}", error_type="UnknownTool")

        try:
            kwargs = tool_def.bind(arguments)
        except pydantic.ValidationError as exc:
            logger.warning("Tool '%s' got invalid arguments: %s", name, exc)
            return ToolResult(
                error=f"Invalid arguments for '{name}': {exc}",
                error_type="ValidationError",
            )

        logger.info("Tool '%s' called with %s", name, _loggable(kwargs))
        started = time.monotonic()
        try:
            result = await tool_def.handler(**kwargs)
        except MemoryStoreError as exc:
            logger.warning(
                "Tool '%s' failed after %.2fs: %s", name, time.monotonic() - started, exc
            )
            return ToolResult(error=str(exc), error_type=type(exc).__name__)
        except Exception:
            logger.exception("Tool '%s' crashed after %.2fs", name, time.monotonic() - started)
            return ToolResult(error=f"Tool '{name}' failed. Check logs for details.")

        logger.info("Tool '%s' finished in %.2fs", name, time.monotonic() - started)
        return result


registry = ToolRegistry()
