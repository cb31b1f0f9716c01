"""Keyword-first query classification with an oracle fallback."""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import structlog

from telemetry_agent.config import ClassifierConfig
from telemetry_agent.errors import TelemetryAgentError
from telemetry_agent.oracle.client import ReasoningOracle
from telemetry_agent.types import Classification, QuickAction, ToolName

logger = structlog.get_logger()

LIST_TABLE_KEYWORDS = (
    "list tables",
    "show tables",
    "what tables",
    "which tables",
    "how many tables",
    "number of tables",
)
SCHEMA_KEYWORDS = ("schema", "structure", "columns")
DATA_KEYWORDS = ("sql", "query", "select", "analyze", "data", "find")
METRIC_KEYWORDS = ("maximum", "average", "voltage", "current", "temperature")
DEVICE_KEYWORDS = ("device", "devices")

# Most specific phrases first: "exceeded current" must not fall into "count".
SIMPLE_ACTION_KEYWORDS: tuple[tuple[tuple[str, ...], QuickAction], ...] = (
    (("active devices",), QuickAction.ACTIVE_DEVICES),
    (("high temperature",), QuickAction.HIGH_TEMPERATURE),
    (("exceeded current", "current exceeded", "threshold violation"), QuickAction.EXCEEDED_CURRENT),
    (("latest", "recent"), QuickAction.LATEST_DATA),
    (("count", "how many"), QuickAction.COUNT_RECORDS),
)

_TABLE_NAME_PATTERNS = (
    re.compile(
        r"\b(?:table|schema|structure)\s+(?:(?:of|for|in)\s+)?(?:the\s+)?([A-Za-z_][\w.]*)",
        flags=re.IGNORECASE,
    ),
    re.compile(r"\b([A-Za-z_][\w.]*)\s+table\b", flags=re.IGNORECASE),
)
_NOT_TABLE_NAMES = frozenset(
    {
        "a", "all", "an", "database", "each", "every", "for", "in", "is", "me",
        "my", "of", "schema", "structure", "table", "tables", "that", "the",
        "this", "what", "which",
    }
)

_CLASSIFIER_PROMPT = """You are a telemetry assistant classifier. Decide whether this user question is simple or complex.

User question: "{question}"

Simple queries (use quick tools):
- count_records: total/how many telemetry records (NOT tables)
- latest_data: recent/latest telemetry data
- active_devices: active devices
- high_temperature: high temperature records
- exceeded_current: current threshold violations

Complex queries (need advanced reasoning):
- database structure, tables, schema
- multiple steps, data relationships, custom SQL, analysis or comparison

Respond with ONLY "simple:<action_name>" or "complex" (e.g. "simple:count_records" or "complex")."""


@dataclass(frozen=True, slots=True)
class KeywordRule:
    """One row of the precedence table: keyword predicate -> classification."""

    name: str
    keywords: tuple[str, ...]
    build: Callable[[str], Classification]

    def matches(self, lowered: str) -> bool:
        return any(keyword in lowered for keyword in self.keywords)


def _simple_action(lowered: str) -> Classification:
    for phrases, action in SIMPLE_ACTION_KEYWORDS:
        if any(phrase in lowered for phrase in phrases):
            return Classification.simple(action.value)
    return Classification.simple(QuickAction.COUNT_RECORDS.value)


_SIMPLE_KEYWORDS = tuple(phrase for phrases, _ in SIMPLE_ACTION_KEYWORDS for phrase in phrases)

LIST_TABLES_RULE = KeywordRule(
    "list_tables",
    LIST_TABLE_KEYWORDS,
    lambda _: Classification.tool_specific(ToolName.LIST_TABLES),
)
SCHEMA_RULE = KeywordRule(
    "schema",
    SCHEMA_KEYWORDS,
    lambda question: Classification.tool_specific(
        ToolName.GET_SCHEMA, extract_table_name(question)
    ),
)
DATA_RULE = KeywordRule(
    "data",
    DATA_KEYWORDS,
    lambda question: Classification.tool_specific(ToolName.SQL_ANALYSIS, question.strip()),
)
METRIC_RULE = KeywordRule("metric", METRIC_KEYWORDS, lambda _: Classification.complex())
DEVICE_RULE = KeywordRule("device", DEVICE_KEYWORDS, lambda _: Classification.complex())
SIMPLE_RULE = KeywordRule(
    "simple", _SIMPLE_KEYWORDS, lambda question: _simple_action(question.lower())
)

DIRECT_RULES: tuple[KeywordRule, ...] = (LIST_TABLES_RULE, SCHEMA_RULE, DATA_RULE, SIMPLE_RULE)

# Metric and device questions need multi-field reasoning, so they are taken
# out before the broader data and aggregate keywords can claim them.
HYBRID_RULES: tuple[KeywordRule, ...] = (
    LIST_TABLES_RULE,
    SCHEMA_RULE,
    METRIC_RULE,
    DEVICE_RULE,
    DATA_RULE,
    SIMPLE_RULE,
)


class QueryClassifier:
    """Resolves a question to exactly one `Classification`.

    Rules are evaluated in order and the first match wins. When nothing
    matches, the oracle (if any) is asked for `simple:<action>` or
    `complex`; any other answer, or any oracle failure, yields `complex`.
    """

    def __init__(
        self,
        *,
        oracle: ReasoningOracle | None = None,
        config: ClassifierConfig | None = None,
        rules: Sequence[KeywordRule] | None = None,
    ) -> None:
        self.oracle = oracle
        self.config = config or ClassifierConfig()
        if rules is not None:
            self.rules = tuple(rules)
        else:
            self.rules = HYBRID_RULES if self.config.variant == "hybrid" else DIRECT_RULES

    def classify(self, question: str) -> Classification:
        lowered = (question or "").lower()
        for rule in self.rules:
            if rule.matches(lowered):
                classification = rule.build(question or "")
                logger.debug("Keyword rule matched", rule=rule.name, kind=classification.kind)
                return classification

        if self.oracle is not None and self.config.use_oracle_fallback:
            return self._classify_with_oracle(question or "")
        return Classification.complex()

    def _classify_with_oracle(self, question: str) -> Classification:
        try:
            reply = self.oracle.complete(_CLASSIFIER_PROMPT.format(question=question))
        except TelemetryAgentError as exc:
            logger.warning("Oracle classification failed", error=str(exc))
            return Classification.complex()
        classification = parse_oracle_classification(reply)
        logger.debug("Oracle classification", reply=reply[:80], kind=classification.kind)
        return classification


def parse_oracle_classification(reply: str) -> Classification:
    """Map an oracle reply onto a classification; unparseable means complex."""
    text = (reply or "").strip().strip("\"'`").strip().lower()
    if not text.startswith("simple:"):
        return Classification.complex()
    remainder = text.split(":", 1)[1].split()
    action = remainder[0].strip("\"'`.,") if remainder else ""
    if not action:
        return Classification.complex()
    return Classification.simple(action)


def extract_table_name(question: str) -> str | None:
    """Pull a table name out of phrases like "schema of the devices table"."""
    for pattern in _TABLE_NAME_PATTERNS:
        for match in pattern.finditer(question):
            name = match.group(1).rstrip(".")
            if name and name.lower() not in _NOT_TABLE_NAMES:
                return name
    return None
