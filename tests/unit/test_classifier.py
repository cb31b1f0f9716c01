import pytest

from telemetry_agent.agent.classifier import (
    QueryClassifier,
    extract_table_name,
    parse_oracle_classification,
)
from telemetry_agent.config import ClassifierConfig
from telemetry_agent.errors import OracleTransient
from telemetry_agent.types import Classification, ToolName


class ScriptedOracle:
    def __init__(self, reply: str | None = None, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply or ""


def _hybrid(**kwargs) -> QueryClassifier:
    return QueryClassifier(config=ClassifierConfig(variant="hybrid"), **kwargs)


def _direct(**kwargs) -> QueryClassifier:
    return QueryClassifier(config=ClassifierConfig(variant="direct"), **kwargs)


@pytest.mark.parametrize(
    "question",
    [
        "List tables",
        "show tables with device data and the schema please",
        "Which tables hold the average current per device?",
    ],
)
def test_list_tables_wins_regardless_of_other_keywords(question: str) -> None:
    for classifier in (_hybrid(), _direct()):
        assert classifier.classify(question) == Classification.tool_specific(ToolName.LIST_TABLES)


def test_what_tables_question_routes_to_list_tables() -> None:
    result = _hybrid().classify("What tables are in the database?")

    assert result.kind == "tool_specific"
    assert result.tool is ToolName.LIST_TABLES


def test_schema_question_extracts_table_name() -> None:
    result = _hybrid().classify("Show me the schema of the devices table")

    assert result == Classification.tool_specific(ToolName.GET_SCHEMA, "devices")


def test_schema_question_without_table_name_has_no_argument() -> None:
    result = _hybrid().classify("Describe the structure")

    assert result.tool is ToolName.GET_SCHEMA
    assert result.extracted_arg is None


@pytest.mark.parametrize(
    "question",
    [
        "What is the maximum temperature?",
        "average voltage for device D1",
        "Which device has the highest current?",
        "current readings of all devices",
    ],
)
def test_hybrid_metric_questions_are_complex_even_with_device(question: str) -> None:
    assert _hybrid().classify(question).kind == "complex"


def test_hybrid_device_only_question_is_complex() -> None:
    assert _hybrid().classify("Tell me about device D7").kind == "complex"


def test_direct_variant_sends_data_keywords_to_sql_analysis() -> None:
    result = _direct().classify("Find the maximum temperature")

    assert result == Classification.tool_specific(
        ToolName.SQL_ANALYSIS, "Find the maximum temperature"
    )


@pytest.mark.parametrize(
    ("question", "action"),
    [
        ("How many records are there?", "count_records"),
        ("Show me the latest readings", "latest_data"),
        ("Show active devices", "active_devices"),
        ("Any high temperature alerts?", "high_temperature"),
        ("List every threshold violation", "exceeded_current"),
    ],
)
def test_direct_variant_simple_actions(question: str, action: str) -> None:
    assert _direct().classify(question) == Classification.simple(action)


def test_unmatched_question_without_oracle_is_complex() -> None:
    assert _hybrid().classify("Hello there").kind == "complex"


def test_unmatched_question_uses_oracle_fallback() -> None:
    oracle = ScriptedOracle(reply="simple:latest_data")

    result = _hybrid(oracle=oracle).classify("What came in last?")

    assert result == Classification.simple("latest_data")
    assert len(oracle.prompts) == 1
    assert "What came in last?" in oracle.prompts[0]


def test_keyword_match_never_calls_oracle() -> None:
    oracle = ScriptedOracle(reply="simple:count_records")

    _hybrid(oracle=oracle).classify("list tables")

    assert oracle.prompts == []


def test_oracle_failure_defaults_to_complex() -> None:
    oracle = ScriptedOracle(error=OracleTransient("rate limited", status_code=429))

    assert _hybrid(oracle=oracle).classify("Hello there").kind == "complex"


def test_oracle_fallback_can_be_disabled() -> None:
    oracle = ScriptedOracle(reply="simple:count_records")
    classifier = QueryClassifier(
        oracle=oracle, config=ClassifierConfig(use_oracle_fallback=False)
    )

    assert classifier.classify("Hello there").kind == "complex"
    assert oracle.prompts == []


@pytest.mark.parametrize(
    ("reply", "expected"),
    [
        ("simple:count_records", Classification.simple("count_records")),
        ("  Simple: latest_data.", Classification.simple("latest_data")),
        ('"simple:active_devices"', Classification.simple("active_devices")),
        ("complex", Classification.complex()),
        ("simple:", Classification.complex()),
        ("I think this is simple", Classification.complex()),
        ("", Classification.complex()),
    ],
)
def test_parse_oracle_classification(reply: str, expected: Classification) -> None:
    assert parse_oracle_classification(reply) == expected


@pytest.mark.parametrize(
    ("question", "expected"),
    [
        ("schema of device_telemetry", "device_telemetry"),
        ("structure for the devices table", "devices"),
        ("what columns are in the devices table", "devices"),
        ("show the table schema", None),
        ("columns please", None),
    ],
)
def test_extract_table_name(question: str, expected: str | None) -> None:
    assert extract_table_name(question) == expected
