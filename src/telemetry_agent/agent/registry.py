"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

from collections.abc import Callable
from contextvars import ContextVar
from time import perf_counter

import structlog
from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field

from telemetry_agent.errors import ToolExecutionError, ToolNotFound
from telemetry_agent.types import ToolName, ToolTrace

logger = structlog.get_logger()


class ToolInput(BaseModel):
    """Single free-text argument shared by every tool."""

    input: str = Field(default="", description="Tool argument as plain text.")


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and dispatch."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: ToolName
    description: str
    handler: Callable[[str], str]
    tags: list[str] = Field(default_factory=list)

    def invoke(self, arg: str) -> str:
        return self.handler(arg)


class ToolRegistry:
    """Maps tool names to specs and exports LangChain-compatible tools."""

    def __init__(self) -> None:
        self._tools: dict[ToolName, ToolSpec] = {}
        self._observer: ContextVar[Callable[[ToolTrace], None] | None] = ContextVar(
            f"tool_observer_{id(self)}", default=None
        )

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name.value}")
        self._tools[spec.name] = spec

    def get(self, name: ToolName | str) -> ToolSpec | None:
        key = _resolve_name(name)
        return self._tools.get(key) if key is not None else None

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set a callback invoked after each tool execution in this context.

        The observer follows the current context, so tool calls made on
        oracle worker threads (agent turns) report to the request that
        started them.
        """
        self._observer.set(observer)

    def invoke(self, name: ToolName | str, arg: str = "") -> str:
        """Execute a tool by name.

        Raises:
            ToolNotFound: No tool is registered under `name`.
            ToolExecutionError: The tool's handler raised; the original
                exception is available as `cause` and `__cause__`.
        """
        spec = self.get(name)
        if spec is None:
            raise ToolNotFound(str(getattr(name, "value", name)))
        return self._execute_spec(spec, arg)

    def as_langchain_tools(self) -> list[StructuredTool]:
        tools: list[StructuredTool] = []
        for spec in self._tools.values():
            tools.append(
                StructuredTool.from_function(
                    name=spec.name.value,
                    description=spec.description,
                    args_schema=ToolInput,
                    func=self._build_function(spec),
                )
            )
        return tools

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def describe(self) -> str:
        return "\n".join(f"- {spec.name.value}: {spec.description}" for spec in self._tools.values())

    def _build_function(self, spec: ToolSpec) -> Callable[..., str]:
        # Agent turns see tool failures as text so the model can recover.
        def _callable(input: str = "") -> str:
            try:
                return self._execute_spec(spec, input)
            except ToolExecutionError as exc:
                return f"Error: {exc.cause}"

        return _callable

    def _execute_spec(self, spec: ToolSpec, arg: str) -> str:
        start = perf_counter()
        failed = False
        output = ""
        try:
            output = spec.invoke(arg)
        except Exception as exc:
            failed = True
            output = f"Error: {exc}"
            logger.warning("Tool execution failed", tool=spec.name.value, error=str(exc))
            raise ToolExecutionError(spec.name.value, exc) from exc
        finally:
            observer = self._observer.get()
            if observer is not None:
                observer(
                    ToolTrace(
                        name=spec.name.value,
                        input_payload={"input": arg},
                        output_preview=output[:320],
                        latency_ms=(perf_counter() - start) * 1000.0,
                        failed=failed,
                    )
                )
        return output


def _resolve_name(name: ToolName | str) -> ToolName | None:
    if isinstance(name, ToolName):
        return name
    try:
        return ToolName(name)
    except ValueError:
        return None
