"""LangChain tool-calling agent used for multi-step oracle turns."""

from __future__ import annotations

from importlib import import_module
from typing import Any

import structlog
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder

_agents_module = import_module("langchain.agents")
create_agent = getattr(_agents_module, "create_agent", None)
AgentExecutor = getattr(_agents_module, "AgentExecutor", None)
create_tool_calling_agent = getattr(_agents_module, "create_tool_calling_agent", None)
_AGENT_RUNTIME = (
    "legacy"
    if callable(AgentExecutor) and callable(create_tool_calling_agent)
    else "graph"
)

from telemetry_agent.agent.registry import ToolRegistry
from telemetry_agent.config import RouterConfig
from telemetry_agent.oracle.client import ReasoningOracle, message_text
from telemetry_agent.oracle.parsing import strip_code_fences

logger = structlog.get_logger()

ASSISTANT_PROMPT = """
You are an industrial telemetry database assistant.

Rules:
1) Be proactive: when asked about data, use the tools to find it instead of asking.
2) For data questions: list tables first, read the schema of relevant tables, then query.
3) Only SELECT statements may be executed.
4) "telemetry" usually lives in device_telemetry; device details live in devices.

Respond with JSON only:
{"summary": "...", "data": [...], "visualizations": [{"type": "table|bar_chart|pie_chart|line_chart|metric_card", "title": "...", "data": [...]}], "insights": ["..."], "recommendations": ["..."]}
""".strip()

SQL_ANALYST_PROMPT = """
You are a SQL expert answering questions about an industrial telemetry database.
Explore the tables automatically, use JOINs when data spans several tables and
only run SELECT statements. Return a JSON object with summary, data,
visualizations, insights and recommendations.
""".strip()

_EMPTY_ANSWER = "I couldn't generate a response."


class ReasoningAgent:
    """Runs one agentic oracle turn over the tools of a registry.

    The final message content is returned verbatim, minus markdown code
    fences. The whole turn is bounded by the oracle's timeout and failures
    surface as `OracleError` subclasses.
    """

    def __init__(
        self,
        *,
        llm: Any,
        tool_registry: ToolRegistry,
        oracle: ReasoningOracle,
        system_prompt: str = ASSISTANT_PROMPT,
        config: RouterConfig | None = None,
        executor: Any | None = None,
    ) -> None:
        self.llm = llm
        self.tool_registry = tool_registry
        self.oracle = oracle
        self.config = config or RouterConfig()

        self.tools = self.tool_registry.as_langchain_tools()
        self._runtime = "custom" if executor is not None else _AGENT_RUNTIME
        if executor is not None:
            self.executor = executor
        elif _AGENT_RUNTIME == "legacy":
            if not callable(create_tool_calling_agent) or not callable(AgentExecutor):
                raise RuntimeError("Legacy LangChain agent runtime is unavailable.")
            prompt = ChatPromptTemplate.from_messages(
                [
                    ("system", system_prompt),
                    MessagesPlaceholder(variable_name="chat_history", optional=True),
                    ("human", "{input}"),
                    MessagesPlaceholder(variable_name="agent_scratchpad"),
                ]
            )
            agent = create_tool_calling_agent(self.llm, self.tools, prompt)
            self.executor = AgentExecutor(
                agent=agent,
                tools=self.tools,
                max_iterations=self.config.max_iterations,
                verbose=False,
                handle_parsing_errors=True,
            )
        else:
            if not callable(create_agent):
                raise RuntimeError("LangChain create_agent is unavailable.")
            self.executor = create_agent(
                model=self.llm,
                tools=self.tools,
                system_prompt=system_prompt,
            )

    def run(self, question: str) -> str:
        log = logger.bind(runtime=self._runtime)
        if self._runtime == "graph":
            payload: dict[str, Any] = {"messages": [{"role": "user", "content": question}]}
        else:
            payload = {"input": question, "chat_history": []}

        result = self.oracle.execute(lambda: self.executor.invoke(payload))
        answer = strip_code_fences(_extract_answer(result))
        log.info("Agent turn complete", answer_chars=len(answer))
        return answer or _EMPTY_ANSWER


def _extract_answer(result: Any) -> str:
    if not isinstance(result, dict):
        return message_text(result)
    if "output" in result and "messages" not in result:
        return str(result.get("output", ""))
    messages = result.get("messages", [])
    if not isinstance(messages, list) or not messages:
        return str(result.get("output", ""))
    return message_text(messages[-1])
