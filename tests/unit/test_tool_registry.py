import pytest

from telemetry_agent.agent.registry import ToolRegistry, ToolSpec
from telemetry_agent.errors import ToolExecutionError, ToolNotFound
from telemetry_agent.types import ToolName


def _echo_spec() -> ToolSpec:
    return ToolSpec(
        name=ToolName.WORKFLOW_HELPER,
        description="echo the argument",
        handler=lambda arg: arg.upper(),
    )


def test_tool_registry_dispatch_by_name_and_enum() -> None:
    registry = ToolRegistry()
    registry.register(_echo_spec())

    assert registry.invoke(ToolName.WORKFLOW_HELPER, "plan") == "PLAN"
    assert registry.invoke("workflow-helper", "plan") == "PLAN"
    assert registry.get("no-such-tool") is None


def test_duplicate_tool_registration_rejected() -> None:
    registry = ToolRegistry()
    registry.register(_echo_spec())

    with pytest.raises(ValueError):
        registry.register(_echo_spec())


def test_unknown_tool_raises_tool_not_found() -> None:
    registry = ToolRegistry()

    with pytest.raises(ToolNotFound) as excinfo:
        registry.invoke("drop-everything")

    assert "Unknown tool: drop-everything" in str(excinfo.value)


def test_handler_failure_is_wrapped_with_cause() -> None:
    registry = ToolRegistry()

    def _boom(_: str) -> str:
        raise RuntimeError("disk on fire")

    registry.register(
        ToolSpec(name=ToolName.SQL_QUERY, description="always fails", handler=_boom)
    )

    with pytest.raises(ToolExecutionError) as excinfo:
        registry.invoke(ToolName.SQL_QUERY, "select 1")

    assert isinstance(excinfo.value.cause, RuntimeError)
    assert excinfo.value.__cause__ is excinfo.value.cause


def test_langchain_tools_render_failures_as_text() -> None:
    registry = ToolRegistry()

    def _boom(_: str) -> str:
        raise RuntimeError("disk on fire")

    registry.register(
        ToolSpec(name=ToolName.SQL_QUERY, description="always fails", handler=_boom)
    )
    registry.register(_echo_spec())

    tools = {tool.name: tool for tool in registry.as_langchain_tools()}

    assert set(tools) == {"sql-query", "workflow-helper"}
    assert tools["sql-query"].invoke({"input": "select 1"}) == "Error: disk on fire"
    assert tools["workflow-helper"].invoke({"input": "hi"}) == "HI"
