"""Canonical response shapes and fixed user-facing messages."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from telemetry_agent.oracle.parsing import strip_code_fences

GUIDANCE_MESSAGE = """I understand you're asking: "{question}". This is a complex query that needs multi-step reasoning, and I could not map it to a specific lookup.

Available tools I can use:
- Database schema information
- Custom SQL queries (SELECT only)
- Quick data queries (record counts, latest data, active devices, high temperature, exceeded current)

Please try rephrasing your question to be more specific, or ask about:
- Database structure (tables, columns)
- Specific data counts or summaries
- Recent telemetry data
- Device information"""

SCHEMA_CLARIFICATION = (
    "Which table should I describe? Please name it, for example: "
    "\"show the schema of the device_telemetry table\"."
)

QUICK_TOOL_UNAVAILABLE = "Error: Quick query tool not available"


def guidance(question: str) -> str:
    return GUIDANCE_MESSAGE.format(question=question.strip())


def structured_payload(
    summary: str,
    *,
    data: Any = None,
    title: str = "Response",
    insights: Sequence[str] = (),
    recommendations: Sequence[str] = (),
) -> dict[str, Any]:
    return {
        "summary": summary,
        "data": data,
        "visualizations": [{"type": "text", "title": title, "data": summary}],
        "insights": list(insights),
        "recommendations": list(recommendations),
    }


def error_payload(message: str) -> dict[str, Any]:
    return structured_payload(
        f"Analysis error: {message}",
        data=[],
        title="Error",
        recommendations=[
            "Check database connection",
            "Verify table names",
            "Try a simpler query",
        ],
    )


def normalize_content(content: str | dict[str, Any], *, structured: bool) -> str | dict[str, Any]:
    """Give every routing path the same outward shape.

    In plain mode text passes through untouched. In structured mode a JSON
    object (fenced or not) is surfaced as-is; anything else is wrapped with
    the raw text as summary.
    """
    if not structured:
        if isinstance(content, dict):
            return json.dumps(content, ensure_ascii=False, default=str)
        return content
    if isinstance(content, dict):
        return content

    try:
        parsed = json.loads(strip_code_fences(content))
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed
    return structured_payload(
        content,
        insights=["Response was not in expected JSON format"],
    )
