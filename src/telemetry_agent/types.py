"""Shared domain models."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal


class ToolName(str, Enum):
    """Stable names of the built-in tools."""

    LIST_TABLES = "list-database-tables"
    GET_SCHEMA = "get-table-schema"
    SQL_QUERY = "sql-query"
    SQL_ANALYSIS = "sql-analysis"
    QUICK_QUERY = "quick-query"
    DATABASE_INFO = "database-info"
    WORKFLOW_HELPER = "workflow-helper"


class QuickAction(str, Enum):
    """Fixed read patterns served by the quick-query tool."""

    COUNT_RECORDS = "count_records"
    LATEST_DATA = "latest_data"
    ACTIVE_DEVICES = "active_devices"
    HIGH_TEMPERATURE = "high_temperature"
    EXCEEDED_CURRENT = "exceeded_current"


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    NORMAL = "NORMAL"
    UNKNOWN = "UNKNOWN"


ClassificationKind = Literal["tool_specific", "simple", "complex"]


@dataclass(frozen=True, slots=True)
class Classification:
    """Routing decision for one question.

    Exactly one variant is active: `tool_specific` carries `tool` (and maybe
    `extracted_arg`), `simple` carries `action`, `complex` carries nothing.
    Use the constructors below instead of building instances by hand.
    """

    kind: ClassificationKind
    tool: ToolName | None = None
    extracted_arg: str | None = None
    action: str | None = None

    @classmethod
    def tool_specific(
        cls, tool: ToolName, extracted_arg: str | None = None
    ) -> "Classification":
        return cls(kind="tool_specific", tool=tool, extracted_arg=extracted_arg)

    @classmethod
    def simple(cls, action: str) -> "Classification":
        return cls(kind="simple", action=action)

    @classmethod
    def complex(cls) -> "Classification":
        return cls(kind="complex")

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind}
        if self.kind == "tool_specific" and self.tool is not None:
            payload["tool"] = self.tool.value
            payload["extracted_arg"] = self.extracted_arg
        elif self.kind == "simple":
            payload["action"] = self.action
        return payload


@dataclass(slots=True)
class Response:
    """Normalized answer returned to the caller for every routing path."""

    content: str | dict[str, Any]
    session_id: str | None = None
    classification: Classification | None = None
    tool_traces: list["ToolTrace"] = field(default_factory=list)
    trace_id: str | None = None


@dataclass(frozen=True, slots=True)
class TelemetryRecord:
    """One reading set from a device.

    Numeric readings may be missing; a missing or NaN reading never counts as
    exceeding a threshold. `current_threshold` overrides the configured
    default for this record only.
    """

    device_id: str
    timestamp: datetime | None = None
    temperature: float | None = None
    gas: float | None = None
    current: float | None = None
    voltage: float | None = None
    current_threshold: float | None = None

    def threshold_or(self, default: float) -> float:
        if is_number(self.current_threshold):
            return float(self.current_threshold)  # type: ignore[arg-type]
        return default

    def exceeds(self, threshold: float) -> bool:
        return is_number(self.current) and float(self.current) > threshold  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    severity: Severity
    possible_cause: str
    recommendation: str
    is_threshold_exceeded: bool
    analysis_timestamp: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "possible_cause": self.possible_cause,
            "recommendation": self.recommendation,
            "is_threshold_exceeded": self.is_threshold_exceeded,
            "analysis_timestamp": self.analysis_timestamp,
        }


@dataclass(slots=True)
class IngestSummary:
    stored: int
    flagged: int = 0
    analyzed: int = 0


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    failed: bool = False


def is_number(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return not math.isnan(float(value))
    except (TypeError, ValueError):
        return False
