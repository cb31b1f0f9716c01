import pytest

from telemetry_agent.agent.classifier import QueryClassifier
from telemetry_agent.agent.planner import ReasoningAgent
from telemetry_agent.agent.registry import ToolRegistry
from telemetry_agent.agent.responses import QUICK_TOOL_UNAVAILABLE, SCHEMA_CLARIFICATION
from telemetry_agent.agent.router import QueryRouter
from telemetry_agent.agent.tools import register_builtin_tools
from telemetry_agent.config import ClassifierConfig, RouterConfig
from telemetry_agent.errors import OracleTransient
from telemetry_agent.obs.tracing import TraceStore
from telemetry_agent.oracle.client import ReasoningOracle
from telemetry_agent.store.schema import build_engine
from telemetry_agent.store.structured import StructuredStore
from telemetry_agent.store.telemetry import TelemetryRepository
from telemetry_agent.types import Classification, TelemetryRecord, ToolName


class ScriptedOracle:
    def __init__(self, *replies: str) -> None:
        self.replies = list(replies)
        self.prompts: list[str] = []

    def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.replies.pop(0) if self.replies else ""

    def execute(self, call):
        return call()


class _StaticExecutor:
    def __init__(self, output: object) -> None:
        self.output = output
        self.payloads: list[dict[str, object]] = []

    def invoke(self, payload: dict[str, object]) -> object:
        self.payloads.append(payload)
        if isinstance(self.output, Exception):
            raise self.output
        return self.output


@pytest.fixture()
def store_parts(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'telemetry.db'}")
    store = StructuredStore(engine)
    repository = TelemetryRepository(engine)
    registry = ToolRegistry()
    register_builtin_tools(registry, store, repository)
    return store, repository, registry


def _router(registry: ToolRegistry, **kwargs) -> QueryRouter:
    kwargs.setdefault("classifier", QueryClassifier(config=ClassifierConfig(variant="hybrid")))
    return QueryRouter(tool_registry=registry, **kwargs)


def test_table_question_lists_store_tables(store_parts) -> None:
    store, _, registry = store_parts
    trace_store = TraceStore()

    response = _router(registry, trace_store=trace_store).handle(
        "What tables are in the database?", session_id="s-1"
    )

    assert response.classification == Classification.tool_specific(ToolName.LIST_TABLES)
    assert ", ".join(store.list_tables()) in response.content
    assert "device_telemetry, devices" in response.content

    trace = trace_store.get(response.trace_id)
    assert trace.session_id == "s-1"
    assert [tool.name for tool in trace.tool_traces] == ["list-database-tables"]


@pytest.mark.parametrize(
    "sql",
    [
        "DROP TABLE x",
        "  drop table device_telemetry;",
        "DELETE FROM devices",
        "SELECT 1; DROP TABLE device_telemetry",
        "select * from devices; delete from devices;",
        "WITH gone AS (DELETE FROM devices RETURNING *) SELECT * FROM gone",
    ],
)
def test_non_select_statement_is_refused(store_parts, sql: str) -> None:
    store, _, registry = store_parts

    response = _router(registry).respond(
        "run this", Classification.tool_specific(ToolName.SQL_QUERY, sql)
    )

    assert response.content.startswith("Error:")
    assert "SELECT queries are allowed" in response.content
    assert store.list_tables() == ["device_telemetry", "devices"]


def test_schema_request_without_table_asks_for_clarification(store_parts) -> None:
    _, _, registry = store_parts

    response = _router(registry).handle("Describe the schema")

    assert response.content == SCHEMA_CLARIFICATION
    assert response.tool_traces == []


def test_schema_request_resolves_singular_table_name(store_parts) -> None:
    _, _, registry = store_parts

    response = _router(registry).handle("Show the schema of the device table")

    assert response.content.startswith("Schema for table 'devices':")
    assert "- device_id (type: VARCHAR, nullable: false)" in response.content


def test_schema_request_for_unknown_table_reports_error(store_parts) -> None:
    _, _, registry = store_parts

    response = _router(registry).handle("schema of sensors")

    assert response.content == "Error: Table 'sensors' does not exist"
    assert response.tool_traces[0].failed is True


def test_simple_count_uses_quick_query(store_parts) -> None:
    _, repository, registry = store_parts
    repository.bulk_insert(
        [TelemetryRecord(device_id="D1", current=10.0), TelemetryRecord(device_id="D2")]
    )

    response = _router(registry).handle("How many records are stored?")

    assert response.classification == Classification.simple("count_records")
    assert response.content == "Total telemetry records in the database: 2"


def test_unknown_simple_action_is_reported(store_parts) -> None:
    _, _, registry = store_parts

    response = _router(registry).respond("dance", Classification.simple("dance"))

    assert response.content == "Error: quick action 'dance' is not available"


def test_missing_quick_tool_is_reported() -> None:
    response = _router(ToolRegistry()).respond("count", Classification.simple("count_records"))

    assert response.content == QUICK_TOOL_UNAVAILABLE


def test_complex_question_without_oracle_returns_guidance(store_parts) -> None:
    _, _, registry = store_parts

    response = _router(registry).handle("Tell me about device D7")

    assert response.classification.kind == "complex"
    assert 'I understand you\'re asking: "Tell me about device D7"' in response.content


def test_schema_guided_answer_runs_extracted_select(store_parts) -> None:
    _, repository, registry = store_parts
    repository.register_device("D1", "Welder 1")
    repository.register_device("D2", "Welder 2", status="inactive")
    oracle = ScriptedOracle(
        "```sql\nSELECT COUNT(*) AS n FROM devices WHERE status = 'active';\n```"
    )

    response = _router(registry, oracle=oracle).handle("Compare the devices in each table")

    assert len(oracle.prompts) == 1
    assert "Database Schema:" in oracle.prompts[0]
    assert response.content.startswith("Based on the database schema")
    assert '"n": 1' in response.content


def test_schema_guided_answer_without_sql_falls_back_to_guidance(store_parts) -> None:
    _, _, registry = store_parts
    oracle = ScriptedOracle("You could look at the devices table.")

    response = _router(registry, oracle=oracle).handle("Compare the devices in each table")

    assert "I understand you're asking" in response.content


def test_oracle_reasoning_about_counts_uses_quick_count(store_parts) -> None:
    _, _, registry = store_parts
    oracle = ScriptedOracle("Step 1: count the telemetry records for the device.")

    response = _router(registry, oracle=oracle).handle("Tell me about device D7")

    assert len(oracle.prompts) == 1
    assert response.content.endswith("Total telemetry records in the database: 0")


def test_agent_answer_is_unfenced_and_structured(store_parts) -> None:
    _, _, registry = store_parts
    oracle = ScriptedOracle()
    executor = _StaticExecutor({"output": '```json\n{"summary": "2 devices", "data": []}\n```'})
    agent = ReasoningAgent(llm=None, tool_registry=registry, oracle=oracle, executor=executor)

    response = _router(
        registry,
        oracle=oracle,
        agent=agent,
        config=RouterConfig(structured_responses=True),
    ).handle("Tell me about device D7")

    assert response.content == {"summary": "2 devices", "data": []}
    assert executor.payloads == [{"input": "Tell me about device D7", "chat_history": []}]
    assert oracle.prompts == []


def test_structured_mode_wraps_plain_text(store_parts) -> None:
    _, _, registry = store_parts
    router = _router(registry, config=RouterConfig(structured_responses=True))

    response = router.handle("list tables")

    assert response.content["summary"].startswith("The database contains the following tables")
    assert response.content["insights"] == ["Response was not in expected JSON format"]
    assert response.content["visualizations"][0]["type"] == "text"


def test_oracle_failure_in_agent_turn_degrades_to_guidance(store_parts) -> None:
    _, _, registry = store_parts
    oracle = ScriptedOracle()
    executor = _StaticExecutor(OracleTransient("Oracle rate limited", status_code=429))
    agent = ReasoningAgent(llm=None, tool_registry=registry, oracle=oracle, executor=executor)
    trace_store = TraceStore()

    response = _router(registry, oracle=oracle, agent=agent, trace_store=trace_store).handle(
        "Tell me about device D7"
    )

    assert 'I understand you\'re asking: "Tell me about device D7"' in response.content
    assert trace_store.summary()["complex_requests"] == 1


def test_oracle_failure_in_reasoning_call_degrades_to_guidance(store_parts) -> None:
    _, _, registry = store_parts

    class _RateLimitedOracle(ScriptedOracle):
        def complete(self, prompt: str) -> str:
            super().complete(prompt)
            raise OracleTransient("Oracle rate limited", status_code=429)

    oracle = _RateLimitedOracle()

    response = _router(registry, oracle=oracle).handle("Tell me about device D7")

    assert len(oracle.prompts) == 1
    assert "I understand you're asking" in response.content


def test_unexpected_agent_failure_is_rendered_into_content(store_parts) -> None:
    _, _, registry = store_parts
    oracle = ScriptedOracle()
    executor = _StaticExecutor(RuntimeError("executor crashed"))
    agent = ReasoningAgent(llm=None, tool_registry=registry, oracle=oracle, executor=executor)

    response = _router(registry, oracle=oracle, agent=agent).handle("Tell me about device D7")

    assert response.content.startswith("I encountered an error while processing your request")
    assert "executor crashed" in response.content


class _ToolCallingExecutor:
    """Calls LangChain tools the way an agent turn does, from whatever thread runs it."""

    def __init__(self, registry: ToolRegistry, *calls: tuple[str, str]) -> None:
        self.registry = registry
        self.calls = calls

    def invoke(self, payload: dict[str, object]) -> dict[str, object]:
        tools = {tool.name: tool for tool in self.registry.as_langchain_tools()}
        outputs = [tools[name].invoke({"input": arg}) for name, arg in self.calls]
        return {"output": "\n".join(outputs)}


def test_agent_tool_calls_on_oracle_workers_are_traced(store_parts) -> None:
    _, _, registry = store_parts
    oracle = ReasoningOracle(None, timeout_seconds=5.0)
    executor = _ToolCallingExecutor(
        registry, ("list-database-tables", ""), ("sql-query", "DROP TABLE devices")
    )
    agent = ReasoningAgent(llm=None, tool_registry=registry, oracle=oracle, executor=executor)
    trace_store = TraceStore()
    try:
        response = _router(registry, oracle=oracle, agent=agent, trace_store=trace_store).handle(
            "Tell me about device D7"
        )
    finally:
        oracle.close()

    assert "device_telemetry, devices" in response.content
    trace = trace_store.get(response.trace_id)
    assert [tool.name for tool in trace.tool_traces] == ["list-database-tables", "sql-query"]
    assert [tool.failed for tool in trace.tool_traces] == [False, True]
    assert trace_store.summary()["failed_tool_calls"] == 1


def test_observer_does_not_leak_between_requests_on_shared_workers(store_parts) -> None:
    _, _, registry = store_parts
    oracle = ReasoningOracle(None, timeout_seconds=5.0, max_workers=1)
    executor = _ToolCallingExecutor(registry, ("list-database-tables", ""))
    agent = ReasoningAgent(llm=None, tool_registry=registry, oracle=oracle, executor=executor)
    router = _router(registry, oracle=oracle, agent=agent)
    try:
        first = router.handle("Tell me about device D7")
        registry.invoke(ToolName.LIST_TABLES)
        second = router.handle("Tell me about device D8")
    finally:
        oracle.close()

    assert len(first.tool_traces) == 1
    assert len(second.tool_traces) == 1
