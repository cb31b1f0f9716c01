"""Request tracing and cost accounting for routed questions."""

from __future__ import annotations

import re
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from telemetry_agent.types import ToolTrace

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    session_id: str | None
    question: str
    classification: dict[str, Any]
    answer_preview: str
    tool_traces: list[ToolTrace]
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float
    latency_ms: float


@dataclass(slots=True)
class CostModel:
    """Simple token pricing model (USD per 1K tokens)."""

    input_per_1k: float = 0.00015
    output_per_1k: float = 0.0006

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (input_tokens / 1000.0) * self.input_per_1k + (
            output_tokens / 1000.0
        ) * self.output_per_1k


class TraceStore:
    """In-memory trace storage for API-level observability."""

    def __init__(self, *, cost_model: CostModel | None = None, capacity: int = 1000) -> None:
        self._records: dict[str, TraceRecord] = {}
        self._cost_model = cost_model or CostModel()
        self._capacity = capacity
        self._lock = threading.Lock()

    def create_record(
        self,
        *,
        question: str,
        session_id: str | None,
        classification: dict[str, Any],
        answer: str,
        tool_traces: list[ToolTrace],
        latency_ms: float,
    ) -> TraceRecord:
        input_tokens = estimate_token_count(question)
        output_tokens = estimate_token_count(answer)
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            session_id=session_id,
            question=question,
            classification=classification,
            answer_preview=answer[:320],
            tool_traces=tool_traces,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost_usd=self._cost_model.estimate_cost(input_tokens, output_tokens),
            latency_ms=latency_ms,
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self._capacity:
                self._records.pop(next(iter(self._records)))
        return record

    def get(self, trace_id: str) -> TraceRecord:
        with self._lock:
            record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        with self._lock:
            return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate routing metrics for dashboard display."""
        with self._lock:
            records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "tool_specific_requests": 0,
                "simple_requests": 0,
                "complex_requests": 0,
                "failed_tool_calls": 0,
                "total_estimated_cost_usd": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        kinds = [record.classification.get("kind") for record in records]

        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "tool_specific_requests": kinds.count("tool_specific"),
            "simple_requests": kinds.count("simple"),
            "complex_requests": kinds.count("complex"),
            "failed_tool_calls": sum(
                1 for record in records for trace in record.tool_traces if trace.failed
            ),
            "total_estimated_cost_usd": sum(record.estimated_cost_usd for record in records),
        }


class Timer:
    """Simple context timer used by the router."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))
