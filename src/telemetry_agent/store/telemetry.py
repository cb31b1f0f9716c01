"""Telemetry persistence: batch inserts, analysis attachment, quick reads."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import Engine, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from telemetry_agent.errors import StoreError
from telemetry_agent.store.schema import device_telemetry, devices
from telemetry_agent.types import AnalysisResult, TelemetryRecord, is_number

logger = structlog.get_logger()


class TelemetryRepository:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def bulk_insert(self, records: Sequence[TelemetryRecord]) -> list[int]:
        """Persist a whole batch in one transaction and return the row ids.

        Records are stored as given: missing readings become NULL.
        """
        if not records:
            return []
        ids: list[int] = []
        try:
            with self.engine.begin() as conn:
                for record in records:
                    result = conn.execute(
                        insert(device_telemetry).values(**_row_from_record(record))
                    )
                    ids.append(int(result.inserted_primary_key[0]))
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to persist telemetry batch: {exc}") from exc
        logger.debug("Telemetry batch persisted", count=len(ids))
        return ids

    def attach_analysis(self, record_id: int, result: AnalysisResult) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    update(device_telemetry)
                    .where(device_telemetry.c.id == record_id)
                    .values(
                        severity=result.severity.value,
                        possible_cause=result.possible_cause,
                        recommendation=result.recommendation,
                        is_threshold_exceeded=result.is_threshold_exceeded,
                        analysis_timestamp=result.analysis_timestamp,
                    )
                )
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to attach analysis to record {record_id}: {exc}") from exc

    def get(self, record_id: int) -> dict[str, Any] | None:
        rows = self._fetch(select(device_telemetry).where(device_telemetry.c.id == record_id))
        return rows[0] if rows else None

    def count(self) -> int:
        try:
            with self.engine.connect() as conn:
                return int(
                    conn.execute(select(func.count()).select_from(device_telemetry)).scalar_one()
                )
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to count telemetry: {exc}") from exc

    def latest(self, limit: int = 5) -> list[dict[str, Any]]:
        return self._fetch(
            select(device_telemetry)
            .order_by(device_telemetry.c.timestamp.desc(), device_telemetry.c.id.desc())
            .limit(limit)
        )

    def high_temperature(self, minimum: float = 70.0, limit: int = 10) -> list[dict[str, Any]]:
        return self._fetch(
            select(device_telemetry)
            .where(device_telemetry.c.temperature > minimum)
            .order_by(device_telemetry.c.temperature.desc())
            .limit(limit)
        )

    def exceeded_current(self, limit: int = 10) -> list[dict[str, Any]]:
        return self._fetch(
            select(device_telemetry)
            .where(device_telemetry.c.is_threshold_exceeded.is_(True))
            .order_by(device_telemetry.c.timestamp.desc())
            .limit(limit)
        )

    def active_devices(self) -> list[dict[str, Any]]:
        return self._fetch(select(devices).where(devices.c.status == "active"))

    def sample(self) -> dict[str, dict[str, Any] | None]:
        telemetry_rows = self._fetch(select(device_telemetry).limit(1))
        device_rows = self._fetch(select(devices).limit(1))
        return {
            "telemetry": telemetry_rows[0] if telemetry_rows else None,
            "device": device_rows[0] if device_rows else None,
        }

    def register_device(self, device_id: str, name: str, status: str = "active") -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    insert(devices).values(
                        device_id=device_id,
                        name=name,
                        status=status,
                        created_at=datetime.now(timezone.utc),
                    )
                )
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to register device {device_id}: {exc}") from exc

    def _fetch(self, statement: Any) -> list[dict[str, Any]]:
        try:
            with self.engine.connect() as conn:
                return [dict(row) for row in conn.execute(statement).mappings().all()]
        except SQLAlchemyError as exc:
            raise StoreError(f"Telemetry read failed: {exc}") from exc


def _row_from_record(record: TelemetryRecord) -> dict[str, Any]:
    return {
        "device_id": record.device_id,
        "timestamp": record.timestamp or datetime.now(timezone.utc),
        "temperature": _number_or_none(record.temperature),
        "gas": _number_or_none(record.gas),
        "current": _number_or_none(record.current),
        "voltage": _number_or_none(record.voltage),
        "current_threshold": _number_or_none(record.current_threshold),
        "is_threshold_exceeded": False,
    }


def _number_or_none(value: Any) -> float | None:
    return float(value) if is_number(value) else None
