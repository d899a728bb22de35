"""Tests for the tool registry."""

import json

import pytest
from pydantic import Field

from src.memory.errors import NotFoundError
from src.tools.base import ToolParams, ToolResult
from src.tools.registry import ToolRegistry, _loggable

# -- Fixtures ----------------------------------------------------------------


@pytest.fixture
def reg() -> ToolRegistry:
    """Fresh registry for each test."""
    return ToolRegistry()


# -- Decorator registration --------------------------------------------------


def test_register_via_decorator(reg: ToolRegistry) -> None:
    @reg.tool(name="ping", description="Ping", category="test")
    async def ping() -> ToolResult:
        return ToolResult(data={"pong": True})

    assert "ping" in reg.tool_names
    assert reg.get("ping").category == "test"
    assert reg.get("missing") is None


def test_decorator_rejects_sync_function(reg: ToolRegistry) -> None:
    with pytest.raises(TypeError, match="must be an async function"):

        @reg.tool(name="bad", description="Bad", category="test")
        def bad() -> ToolResult:
            return ToolResult()


# -- Schema generation -------------------------------------------------------


def test_get_schemas_no_params(reg: ToolRegistry) -> None:
    @reg.tool(name="simple", description="Simple tool", category="test")
    async def simple() -> ToolResult:
        return ToolResult()

    [schema] = reg.get_schemas()
    assert schema["name"] == "simple"
    assert schema["description"] == "Simple tool"
    assert schema["input_schema"] == {"type": "object", "properties": {}}


def test_get_schemas_with_params(reg: ToolRegistry) -> None:
    class Params(ToolParams):
        query: str = Field(description="Search query")
        limit: int = Field(default=10, description="Max results")

    @reg.tool(name="search", description="Search", category="test", params_model=Params)
    async def search(query: str, limit: int = 10) -> ToolResult:
        return ToolResult()

    schema = reg.get_schemas()[0]["input_schema"]
    assert schema["properties"]["query"]["type"] == "string"
    assert schema["properties"]["limit"]["type"] == "integer"
    assert schema["required"] == ["query"]


def test_get_schemas_by_category(reg: ToolRegistry) -> None:
    @reg.tool(name="a", description="A", category="memory")
    async def a() -> ToolResult:
        return ToolResult()

    @reg.tool(name="b", description="B", category="other")
    async def b() -> ToolResult:
        return ToolResult()

    assert [s["name"] for s in reg.get_schemas("memory")] == ["a"]
    assert len(reg.get_schemas()) == 2


def test_loggable_shortens_long_strings() -> None:
    args = {"content": "x" * 500, "user_id": "u1", "limit": 3}
    shown = _loggable(args)
    assert shown["content"] == "x" * 80 + "..."
    assert shown["user_id"] == "u1"
    assert shown["limit"] == 3


# -- Execution ---------------------------------------------------------------


async def test_execute_with_params(reg: ToolRegistry) -> None:
    class AddParams(ToolParams):
        a: int = Field(description="First number")
        b: int = Field(default=1, description="Second number")

    @reg.tool(name="add", description="Add", category="test", params_model=AddParams)
    async def add(a: int, b: int) -> ToolResult:
        return ToolResult(data={"sum": a + b})

    assert (await reg.execute("add", {"a": 3, "b": 7})).data == {"sum": 10}
    assert (await reg.execute("add", {"a": 3})).data == {"sum": 4}


async def test_execute_unknown_tool(reg: ToolRegistry) -> None:
    result = await reg.execute("nonexistent", {})
    assert not result.success
    assert result.error_type == "UnknownTool"


async def test_execute_with_invalid_params(reg: ToolRegistry) -> None:
    class Params(ToolParams):
        count: int = Field(description="A number")

    @reg.tool(name="strict", description="Strict", category="test", params_model=Params)
    async def strict(count: int) -> ToolResult:
        return ToolResult(data={"count": count})

    result = await reg.execute("strict", {"count": "not_a_number"})
    assert not result.success
    assert result.error_type == "ValidationError"


async def test_execute_memory_error_keeps_kind(reg: ToolRegistry) -> None:
    @reg.tool(name="lookup", description="Lookup", category="test")
    async def lookup() -> ToolResult:
        msg = "Message not found: m1"
        raise NotFoundError(msg)

    result = await reg.execute("lookup", {})
    assert result.error == "Message not found: m1"
    assert result.error_type == "NotFoundError"


async def test_execute_handler_exception(reg: ToolRegistry) -> None:
    @reg.tool(name="boom", description="Boom", category="test")
    async def boom() -> ToolResult:
        msg = "kaboom"
        raise RuntimeError(msg)

    result = await reg.execute("boom", {})
    assert not result.success
    assert "kaboom" not in result.error
    assert "failed" in result.error


# -- ToolResult serialization ------------------------------------------------


def test_tool_result_success_serialization() -> None:
    r = ToolResult(data={"key": "val"})
    assert r.success
    assert json.loads(r.to_content()) == {"key": "val"}


def test_tool_result_empty_data_serialization() -> None:
    assert json.loads(ToolResult().to_content()) == {}


def test_tool_result_error_serialization() -> None:
    r = ToolResult(error="something broke")
    assert not r.success
    assert json.loads(r.to_content()) == {"error": "something broke", "is_error": True}
