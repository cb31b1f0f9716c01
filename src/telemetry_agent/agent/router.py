"""Routes classified questions to a strategy and normalizes the answer."""

from __future__ import annotations

from typing import Any

import structlog

from telemetry_agent.agent.classifier import QueryClassifier
from telemetry_agent.agent.planner import ReasoningAgent
from telemetry_agent.agent.registry import ToolRegistry
from telemetry_agent.agent.responses import (
    QUICK_TOOL_UNAVAILABLE,
    SCHEMA_CLARIFICATION,
    guidance,
    normalize_content,
)
from telemetry_agent.config import RouterConfig
from telemetry_agent.errors import OracleError, ToolExecutionError, ToolNotFound
from telemetry_agent.oracle.client import ReasoningOracle
from telemetry_agent.oracle.parsing import extract_select_statement
from telemetry_agent.obs.tracing import Timer, TraceStore
from telemetry_agent.types import Classification, QuickAction, Response, ToolName, ToolTrace

logger = structlog.get_logger()

SCHEMA_HINTS = ("schema", "table", "structure", "column")

_REASONING_PROMPT = """You are an advanced telemetry assistant that performs multi-step reasoning.

Available tools:
{tools}

User question: "{question}"

Think step by step:
Step 1: Determine what information you need
Step 2: Choose the appropriate tool(s) to get that information
Step 3: Explain how the results answer the question

Respond with your reasoning and the tools you want to use."""

_FOLLOW_UP_PROMPT = """Based on this schema information:
{schema}

Answer the user's question: "{question}"

Write exactly one SQL SELECT statement that retrieves the needed data and end it with a semicolon."""


class QueryRouter:
    """Executes the strategy picked by the classifier.

    Every path returns a `Response`; tool failures, oracle failures and
    unexpected errors are rendered into its content instead of raised.
    """

    def __init__(
        self,
        *,
        tool_registry: ToolRegistry,
        classifier: QueryClassifier | None = None,
        oracle: ReasoningOracle | None = None,
        agent: ReasoningAgent | None = None,
        trace_store: TraceStore | None = None,
        config: RouterConfig | None = None,
    ) -> None:
        self.tool_registry = tool_registry
        self.classifier = classifier or QueryClassifier(oracle=oracle)
        self.oracle = oracle
        self.agent = agent
        self.trace_store = trace_store
        self.config = config or RouterConfig()

    def handle(self, question: str, session_id: str | None = None) -> Response:
        """Classify `question` and answer it."""
        return self.respond(question, self.classifier.classify(question), session_id=session_id)

    def respond(
        self,
        question: str,
        classification: Classification,
        *,
        session_id: str | None = None,
    ) -> Response:
        log = logger.bind(session_id=session_id, kind=classification.kind)
        observed: list[ToolTrace] = []
        self.tool_registry.set_observer(observed.append)
        try:
            with Timer() as timer:
                try:
                    content: str | dict[str, Any] = self._dispatch(question, classification)
                except Exception as exc:
                    log.exception("Routing failed")
                    content = (
                        f"I encountered an error while processing your request: {exc}. "
                        "Please try rephrasing your question."
                    )
        finally:
            self.tool_registry.set_observer(None)

        content = normalize_content(content, structured=self.config.structured_responses)
        response = Response(
            content=content,
            session_id=session_id,
            classification=classification,
            tool_traces=observed,
        )
        if self.trace_store is not None:
            record = self.trace_store.create_record(
                question=question,
                session_id=session_id,
                classification=classification.as_dict(),
                answer=content if isinstance(content, str) else str(content.get("summary", "")),
                tool_traces=observed,
                latency_ms=timer.elapsed_ms,
            )
            response.trace_id = record.trace_id
        log.info(
            "Question answered",
            latency_ms=round(timer.elapsed_ms, 2),
            latency_target_met=timer.elapsed_ms <= self.config.target_latency_seconds * 1000.0,
            tools=len(observed),
        )
        return response

    def _dispatch(self, question: str, classification: Classification) -> str | dict[str, Any]:
        if classification.kind == "tool_specific" and classification.tool is not None:
            return self._respond_tool(classification.tool, classification.extracted_arg)
        if classification.kind == "simple" and classification.action:
            return self._respond_simple(classification.action)
        return self._respond_complex(question)

    def _respond_tool(self, tool: ToolName, extracted_arg: str | None) -> str:
        if tool == ToolName.GET_SCHEMA and not extracted_arg:
            return SCHEMA_CLARIFICATION
        return self._invoke_tool(tool, extracted_arg or "")

    def _respond_simple(self, action: str) -> str:
        if self.tool_registry.get(ToolName.QUICK_QUERY) is None:
            return QUICK_TOOL_UNAVAILABLE
        if action not in {item.value for item in QuickAction}:
            return f"Error: quick action '{action}' is not available"
        return self._invoke_tool(ToolName.QUICK_QUERY, action)

    def _respond_complex(self, question: str) -> str:
        try:
            return self._reason(question)
        except OracleError as exc:
            logger.warning("Oracle unavailable, answering with guidance", error=str(exc))
            return guidance(question)

    def _reason(self, question: str) -> str:
        if _mentions_schema(question):
            return self._schema_guided(question)

        if self.agent is not None:
            return self.agent.run(question)

        if self.oracle is not None:
            reasoning = self.oracle.complete(
                _REASONING_PROMPT.format(tools=self.tool_registry.describe(), question=question)
            )
            if _mentions_schema(reasoning):
                return self._schema_guided(question)
            lowered = reasoning.lower()
            if "count" in lowered or "how many" in lowered:
                result = self._invoke_tool(ToolName.QUICK_QUERY, QuickAction.COUNT_RECORDS.value)
                return f"Based on your question about counting records:\n\n{result}"

        return guidance(question)

    def _schema_guided(self, question: str) -> str:
        """Fetch schema info, then ask the oracle for one SELECT and run it."""
        schema_info = self._invoke_tool(ToolName.DATABASE_INFO, "schema")
        if self.oracle is None:
            return f"Here's the database schema:\n\n{schema_info}"

        follow_up = self.oracle.complete(
            _FOLLOW_UP_PROMPT.format(schema=schema_info, question=question)
        )
        sql = extract_select_statement(follow_up)
        if sql is None:
            logger.info("No SQL statement in oracle follow-up")
            return guidance(question)
        result = self._invoke_tool(ToolName.SQL_QUERY, sql)
        return f"Based on the database schema and your question, here's the result:\n\n{result}"

    def _invoke_tool(self, tool: ToolName, arg: str) -> str:
        try:
            return self.tool_registry.invoke(tool, arg)
        except ToolNotFound as exc:
            return f"Error: {exc}"
        except ToolExecutionError as exc:
            return f"Error: {exc.cause}"


def _mentions_schema(text: str) -> bool:
    lowered = text.lower()
    return any(hint in lowered for hint in SCHEMA_HINTS)
