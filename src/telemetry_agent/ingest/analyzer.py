"""Anomaly characterization for telemetry records above the current threshold."""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import structlog

from telemetry_agent.config import PipelineConfig
from telemetry_agent.errors import OracleError, OracleTransient
from telemetry_agent.ingest.breaker import Admission, OracleCircuitBreaker
from telemetry_agent.oracle.client import ReasoningOracle
from telemetry_agent.oracle.parsing import parse_json_object
from telemetry_agent.types import AnalysisResult, Severity, TelemetryRecord

logger = structlog.get_logger()

CRITICAL_EXCEEDANCE = 0.5

_ANALYSIS_PROMPT = """You are an AI assistant analyzing industrial welding equipment telemetry.

TELEMETRY DATA:
- Device ID: {device_id}
- Current: {current} A (Threshold: {threshold} A)
- Status: Current is {status}
- Voltage: {voltage} V
- Temperature: {temperature} °C
- Gas: {gas} ppm
- Timestamp: {timestamp}

ANALYSIS REQUIREMENTS:
1. Determine if current {current}A exceeds threshold {threshold}A
2. If exceeded, analyze potential causes considering ALL parameters
3. Provide a severity level based on how much the threshold is exceeded
4. Consider equipment context (overheating, gas levels, electrical issues)
5. Suggest immediate actionable recommendations

SEVERITY LEVELS:
- CRITICAL: Current exceeds threshold by >50% OR temperature >80°C
- WARNING: Current exceeds threshold by 10-50% OR temperature 60-80°C
- NORMAL: All parameters within safe ranges

Respond ONLY with valid JSON in this exact format:
{{
    "severity": "CRITICAL" | "WARNING" | "NORMAL",
    "possibleCause": "Brief technical explanation",
    "recommendation": "Specific actionable steps",
    "isCurrentExceeded": {exceeded}
}}"""


class AnomalyAnalyzer:
    """Produces an `AnalysisResult` for a record; never raises.

    The oracle is consulted only while the circuit breaker admits calls. A
    rate-limit reply opens the breaker; any oracle failure falls back to the
    threshold ratio.
    """

    def __init__(
        self,
        *,
        oracle: ReasoningOracle | None,
        breaker: OracleCircuitBreaker,
        config: PipelineConfig | None = None,
    ) -> None:
        self.oracle = oracle
        self.breaker = breaker
        self.config = config or PipelineConfig()

    def analyze(self, record: TelemetryRecord) -> AnalysisResult:
        threshold = record.threshold_or(self.config.current_threshold)
        log = logger.bind(device_id=record.device_id, threshold=threshold)

        if self.oracle is None:
            return fallback_analysis(record, threshold, reason="Reasoning oracle not configured")

        admission = self.breaker.try_acquire()
        if admission is Admission.DENIED:
            log.info("Oracle blocked, skipping analysis")
            return blocked_analysis(record, threshold, self.breaker.remaining_seconds())

        try:
            reply = self.oracle.complete(build_analysis_prompt(record, threshold))
            payload = parse_json_object(reply)
        except OracleError as exc:
            rate_limited = isinstance(exc, OracleTransient) and exc.rate_limited
            self.breaker.record_failure(admission, rate_limited=rate_limited)
            log.warning("Oracle analysis failed", error=str(exc), rate_limited=rate_limited)
            return fallback_analysis(record, threshold)
        except Exception:
            self.breaker.record_failure(admission, rate_limited=False)
            log.exception("Unexpected analysis failure")
            return fallback_analysis(record, threshold)

        self.breaker.record_success(admission)
        result = result_from_payload(payload, is_threshold_exceeded=record.exceeds(threshold))
        log.info("Analysis completed", severity=result.severity.value)
        return result


def build_analysis_prompt(record: TelemetryRecord, threshold: float) -> str:
    exceeded = record.exceeds(threshold)
    return _ANALYSIS_PROMPT.format(
        device_id=record.device_id,
        current=_reading(record.current),
        threshold=_reading(threshold),
        status="EXCEEDED" if exceeded else "NORMAL",
        voltage=_reading(record.voltage),
        temperature=_reading(record.temperature),
        gas=_reading(record.gas),
        timestamp=record.timestamp.isoformat() if record.timestamp else "n/a",
        exceeded="true" if exceeded else "false",
    )


def result_from_payload(
    payload: Mapping[str, Any], *, is_threshold_exceeded: bool
) -> AnalysisResult:
    """Build a result from the oracle's JSON, defaulting missing fields."""
    raw_severity = str(payload.get("severity") or "").strip().upper()
    severity = (
        Severity(raw_severity)
        if raw_severity in Severity.__members__
        else Severity.UNKNOWN
    )
    return AnalysisResult(
        severity=severity,
        possible_cause=str(payload.get("possibleCause") or "Analysis incomplete"),
        recommendation=str(payload.get("recommendation") or "Manual inspection required"),
        is_threshold_exceeded=is_threshold_exceeded,
        analysis_timestamp=_now(),
    )


def fallback_severity(current: float | None, threshold: float) -> Severity:
    """Severity from the exceedance ratio alone.

    Above 50% over threshold is CRITICAL, any exceedance is WARNING,
    otherwise NORMAL. Missing or NaN current is NORMAL.
    """
    record = TelemetryRecord(device_id="", current=current)
    if not record.exceeds(threshold):
        return Severity.NORMAL
    ratio = (float(current) - threshold) / threshold if threshold > 0 else math.inf  # type: ignore[arg-type]
    return Severity.CRITICAL if ratio > CRITICAL_EXCEEDANCE else Severity.WARNING


def fallback_analysis(
    record: TelemetryRecord,
    threshold: float,
    *,
    reason: str = "Oracle analysis failed",
) -> AnalysisResult:
    exceeded = record.exceeds(threshold)
    return AnalysisResult(
        severity=fallback_severity(record.current, threshold),
        possible_cause=f"{reason} - using threshold-based fallback",
        recommendation=(
            "Current exceeds threshold. Check equipment immediately."
            if exceeded
            else "All parameters appear normal."
        ),
        is_threshold_exceeded=exceeded,
        analysis_timestamp=_now(),
    )


def blocked_analysis(
    record: TelemetryRecord, threshold: float, remaining_seconds: float
) -> AnalysisResult:
    return AnalysisResult(
        severity=Severity.UNKNOWN,
        possible_cause=(
            f"oracle blocked: rate limited, retry in {math.ceil(remaining_seconds)}s"
        ),
        recommendation="wait until the oracle is available again",
        is_threshold_exceeded=record.exceeds(threshold),
        analysis_timestamp=_now(),
    )


def _reading(value: float | None) -> str:
    if value is None:
        return "n/a"
    try:
        number = float(value)
    except (TypeError, ValueError):
        return "n/a"
    return "n/a" if math.isnan(number) else f"{number:g}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
