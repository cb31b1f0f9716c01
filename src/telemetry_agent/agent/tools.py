"""Built-in tool implementations backed by the telemetry store."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from telemetry_agent.agent.registry import ToolRegistry, ToolSpec
from telemetry_agent.agent.responses import error_payload, structured_payload
from telemetry_agent.errors import TelemetryAgentError
from telemetry_agent.store.structured import StructuredStore
from telemetry_agent.store.telemetry import TelemetryRepository
from telemetry_agent.types import QuickAction, ToolName

HIGH_TEMPERATURE_C = 70.0

WORKFLOW_STEPS = """Workflow suggestions for: "{question}"
1. List available tables to understand data structure
2. Identify tables related to the query (e.g. device_telemetry, devices)
3. Get schema of relevant tables if needed
4. Execute a SELECT query to retrieve the data
5. Provide insights and recommendations

Use the tools in sequence for best results."""


def register_store_tools(registry: ToolRegistry, store: StructuredStore) -> None:
    """Register the introspection and read-only query tools.

    Tools:
    - `list-database-tables`: names of all tables.
    - `get-table-schema`: columns of one table with type and nullability.
    - `sql-query`: run a SELECT statement and return rows as JSON.
    """

    def _list_tables(_: str) -> str:
        tables = store.list_tables()
        if not tables:
            return "No tables found in the database."
        return f"The database contains the following tables: {', '.join(tables)}"

    def _get_schema(table_name: str) -> str:
        name = table_name.strip().strip("'\"`")
        if not name:
            raise ValueError("Provide the table name as input.")
        name = _resolve_table_name(store, name)
        columns = store.describe_table(name)
        lines = [
            f"- {column} (type: {attrs['type']}, nullable: {str(attrs['nullable']).lower()})"
            for column, attrs in columns.items()
        ]
        return f"Schema for table '{name}':\n" + "\n".join(lines)

    def _sql_query(sql: str) -> str:
        rows = store.query(sql)
        return f"Query executed successfully. Results:\n{_to_json(rows)}"

    registry.register(
        ToolSpec(
            name=ToolName.LIST_TABLES,
            description="List all tables in the database. The input should be an empty string.",
            handler=_list_tables,
            tags=["schema"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.GET_SCHEMA,
            description="Get the columns of a specific table. Provide the table name as input.",
            handler=_get_schema,
            tags=["schema"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.SQL_QUERY,
            description=(
                "Execute a custom read-only SQL query. Input: a valid SQL SELECT statement. "
                "Output: query results as JSON."
            ),
            handler=_sql_query,
            tags=["sql"],
        )
    )


def register_builtin_tools(
    registry: ToolRegistry,
    store: StructuredStore,
    repository: TelemetryRepository,
    *,
    analyst: Callable[[str], str] | None = None,
) -> None:
    """Register the default tool set used by the router.

    Besides the store tools this adds `quick-query`, `database-info`,
    `sql-analysis` (delegates free-text questions to `analyst`, an agentic
    oracle turn) and `workflow-helper`.
    """

    register_store_tools(registry, store)

    quick_actions: dict[str, Callable[[], str]] = {
        QuickAction.COUNT_RECORDS.value: lambda: (
            f"Total telemetry records in the database: {repository.count()}"
        ),
        QuickAction.LATEST_DATA.value: lambda: (
            f"Latest 5 telemetry records:\n{_to_json(repository.latest(limit=5))}"
        ),
        QuickAction.ACTIVE_DEVICES.value: lambda: (
            f"Active devices in the system:\n{_to_json(repository.active_devices())}"
        ),
        QuickAction.HIGH_TEMPERATURE.value: lambda: (
            f"High temperature records (>{HIGH_TEMPERATURE_C:.0f}°C):\n"
            f"{_to_json(repository.high_temperature(minimum=HIGH_TEMPERATURE_C))}"
        ),
        QuickAction.EXCEEDED_CURRENT.value: lambda: (
            f"Current exceeded records:\n{_to_json(repository.exceeded_current())}"
        ),
    }

    def _quick_query(action: str) -> str:
        handler = quick_actions.get(action.strip().lower())
        if handler is None:
            return "Available quick queries: " + ", ".join(quick_actions)
        return handler()

    def _database_info(topic: str) -> str:
        topic = topic.strip().lower()
        if topic == "schema":
            schema = {
                table: {"columns": list(store.describe_table(table))}
                for table in store.list_tables()
            }
            return f"Database Schema:\n{_to_json({'tables': schema})}"
        if topic == "tables":
            return f"Available tables:\n{_to_json(store.list_tables())}"
        if topic == "sample_data":
            return f"Sample data:\n{_to_json(repository.sample())}"
        return "Available options: 'schema', 'tables', 'sample_data'"

    def _sql_analysis(question: str) -> str:
        question = question.strip()
        if not question:
            raise ValueError("Provide the question or SELECT statement to analyze.")
        if question.lower().startswith("select"):
            return registry.invoke(ToolName.SQL_QUERY, question)
        if analyst is None:
            return _to_json(
                structured_payload(
                    "SQL analysis needs a configured reasoning model. "
                    "Ask for a quick query or provide a SELECT statement instead.",
                    data=[],
                    recommendations=["Configure OPENAI_API_KEY", "Submit a SELECT statement"],
                )
            )
        try:
            return analyst(question) or "No data found."
        except TelemetryAgentError as exc:
            return _to_json(error_payload(str(exc)))

    registry.register(
        ToolSpec(
            name=ToolName.QUICK_QUERY,
            description=(
                "Quick access to frequently requested data without writing SQL. Input should "
                "be one of: " + ", ".join(quick_actions)
            ),
            handler=_quick_query,
            tags=["telemetry"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.DATABASE_INFO,
            description=(
                "Information about the database structure and available data. "
                "Input: 'schema', 'tables' or 'sample_data'."
            ),
            handler=_database_info,
            tags=["schema"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.SQL_ANALYSIS,
            description=(
                "Answer data questions by exploring tables and running SQL. Returns JSON with "
                "summary, data, visualizations, insights and recommendations."
            ),
            handler=_sql_analysis,
            tags=["sql", "analysis"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.WORKFLOW_HELPER,
            description="Plan a multi-step database lookup.",
            handler=lambda question: WORKFLOW_STEPS.format(question=question.strip()),
            tags=["planning"],
        )
    )


def _resolve_table_name(store: StructuredStore, name: str) -> str:
    """Match `name` against existing tables, tolerating case and plurals."""
    tables = store.list_tables()
    if name in tables:
        return name
    folded = {table.casefold(): table for table in tables}
    for candidate in (name.casefold(), f"{name.casefold()}s", name.casefold().rstrip("s")):
        if candidate in folded:
            return folded[candidate]
    return name


def _to_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, default=str)
