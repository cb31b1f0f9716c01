"""Domain-specific exceptions.

Everything raised on purpose inside the package inherits from
TelemetryAgentError so the API layer can catch the whole family at once.
"""

from __future__ import annotations


class TelemetryAgentError(Exception):
    """Base exception for all telemetry agent errors."""


class ToolNotFound(TelemetryAgentError):
    """No tool is registered under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class ToolExecutionError(TelemetryAgentError):
    """A registered tool failed while executing.

    The underlying failure is chained as `__cause__`.
    """

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"Tool '{name}' failed: {cause}")
        self.name = name
        self.cause = cause


class UnauthorizedQuery(TelemetryAgentError):
    """A statement other than SELECT was submitted to a read-only tool."""


class StoreError(TelemetryAgentError):
    """The structured store failed underneath an operation."""


class OracleError(TelemetryAgentError):
    """The reasoning oracle call failed.

    Attributes:
        status_code: HTTP status reported by the transport, if any.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class OracleTransient(OracleError):
    """The oracle is rate limited (HTTP 429) or timed out."""

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class OracleMalformedResponse(OracleError):
    """The oracle answered with text that could not be parsed as expected."""
