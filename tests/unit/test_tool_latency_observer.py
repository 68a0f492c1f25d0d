from pydantic import BaseModel

from hybrid_qa.agent.registry import ToolRegistry, ToolSpec
from hybrid_qa.types import ToolResult


class EchoInput(BaseModel):
    text: str


async def _upper(data: EchoInput, scope_ids: list[str], budget) -> ToolResult:
    return ToolResult(tool_name="echo", success=True, data={"text": [data.text.upper()]}, confidence=0.6)


def _registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(
        ToolSpec(
            name="echo",
            description="uppercase",
            args_schema=EchoInput,
            handler=_upper,
        )
    )
    return registry


async def test_tool_observer_captures_latency_and_payload() -> None:
    registry = _registry()

    observed = []
    registry.set_observer(observed.append)
    result = await registry.execute("echo", {"text": "hello"}, ["s"])
    registry.set_observer(None)

    assert result.data == {"text": ["HELLO"]}
    assert len(observed) == 1
    assert observed[0].name == "echo"
    assert observed[0].input_payload == {"text": "hello"}
    assert observed[0].latency_ms >= 0.0
    assert observed[0].success
    assert observed[0].confidence == 0.6
    assert observed[0].output_preview == "[text] HELLO"


async def test_per_call_observer_only_sees_its_call() -> None:
    registry = _registry()
    first, second = [], []

    await registry.execute("echo", {"text": "a"}, [], observer=first.append)
    await registry.execute("echo", {"text": "b"}, [], observer=second.append)

    assert [trace.input_payload for trace in first] == [{"text": "a"}]
    assert [trace.input_payload for trace in second] == [{"text": "b"}]
