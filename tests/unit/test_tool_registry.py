import pytest
from pydantic import BaseModel, Field

from hybrid_qa.agent.registry import ToolRegistry, ToolSpec, preview_result
from hybrid_qa.types import ToolResult


class EchoInput(BaseModel):
    value: int = Field(ge=1)


async def _echo(data: EchoInput, scope_ids: list[str], budget) -> ToolResult:
    return ToolResult(
        tool_name="echo",
        success=True,
        data={"values": [str(data.value)], "scopes": scope_ids},
        confidence=0.8,
    )


def _spec(handler=_echo) -> ToolSpec:
    return ToolSpec(
        name="echo",
        description="echo positive int",
        args_schema=EchoInput,
        handler=handler,
    )


async def test_tool_registry_validation() -> None:
    registry = ToolRegistry()
    registry.register(_spec())

    result = await registry.execute("echo", {"value": 3}, ["space-1"])
    assert result.success
    assert result.data["values"] == ["3"]
    assert result.data["scopes"] == ["space-1"]

    invalid = await registry.execute("echo", {"value": 0}, ["space-1"])
    assert not invalid.success
    assert invalid.confidence == 0.0


def test_duplicate_tool_registration_rejected() -> None:
    registry = ToolRegistry()
    spec = _spec()

    registry.register(spec)
    with pytest.raises(ValueError):
        registry.register(spec)


async def test_unknown_tool_raises_key_error() -> None:
    with pytest.raises(KeyError):
        await ToolRegistry().execute("missing", {}, [])


async def test_handler_errors_become_failed_results() -> None:
    async def _broken(data: EchoInput, scope_ids: list[str], budget) -> ToolResult:
        raise RuntimeError("backend exploded")

    registry = ToolRegistry()
    registry.register(_spec(_broken))

    result = await registry.execute("echo", {"value": 1}, [])

    assert result == ToolResult.failure("echo")


async def test_langchain_export_runs_through_registry() -> None:
    registry = ToolRegistry()
    registry.register(_spec())

    tools = registry.as_langchain_tools(["space-1"])

    assert [tool.name for tool in tools] == ["echo"]
    assert await tools[0].ainvoke({"value": 2}) == "[values] 2\n[scopes] space-1"


def test_preview_for_failed_result() -> None:
    assert preview_result(ToolResult.failure("echo")) == "NO_RESULTS"
