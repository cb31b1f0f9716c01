"""Best-effort parsing of free text returned by the oracle."""

from __future__ import annotations

import json
import re
from typing import Any

from telemetry_agent.errors import OracleMalformedResponse

_FENCE_OPEN = re.compile(r"```(?:json)?\s*", flags=re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"```\s*")
_SELECT_STATEMENT = re.compile(r"\bSELECT\b.*?;", flags=re.IGNORECASE | re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences (``` or ```json) and surrounding whitespace."""
    return _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text)).strip()


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse an oracle reply as one JSON object.

    Fenced and unfenced replies parse identically. Anything that is not a
    JSON object raises `OracleMalformedResponse`.
    """
    cleaned = strip_code_fences(text)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise OracleMalformedResponse(f"Oracle reply is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise OracleMalformedResponse(
            f"Oracle reply is JSON but not an object: {type(payload).__name__}"
        )
    return payload


def extract_select_statement(text: str) -> str | None:
    """Return the first `SELECT ... ;` statement found in `text`, if any.

    The statement must end with a semicolon; replies without one yield None
    and callers fall back to guidance text.
    """
    match = _SELECT_STATEMENT.search(strip_code_fences(text))
    if match is None:
        return None
    return match.group(0).strip()
