"""End-to-end ingest pipeline: persist -> threshold check -> analyze -> attach."""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from telemetry_agent.config import PipelineConfig
from telemetry_agent.errors import StoreError
from telemetry_agent.ingest.analyzer import AnomalyAnalyzer
from telemetry_agent.store.telemetry import TelemetryRepository
from telemetry_agent.types import IngestSummary, TelemetryRecord

logger = structlog.get_logger()


class TelemetryPipeline:
    """Coordinates storage and anomaly analysis for telemetry batches.

    The raw batch is stored first, in one transaction; a failure there is the
    only way `ingest` raises. Records are then checked one by one in batch
    order, and each record above threshold gets exactly one analysis result
    attached. Problems after storage are logged and never undo it.
    """

    def __init__(
        self,
        repository: TelemetryRepository,
        analyzer: AnomalyAnalyzer,
        config: PipelineConfig | None = None,
    ) -> None:
        self._repository = repository
        self._analyzer = analyzer
        self.config = config or analyzer.config

    def ingest(self, batch: Sequence[TelemetryRecord]) -> IngestSummary:
        log = logger.bind(batch_size=len(batch))
        record_ids = self._repository.bulk_insert(batch)

        summary = IngestSummary(stored=len(record_ids))
        for record_id, record in zip(record_ids, batch, strict=True):
            threshold = record.threshold_or(self.config.current_threshold)
            if not record.exceeds(threshold):
                continue

            summary.flagged += 1
            result = self._analyzer.analyze(record)
            try:
                self._repository.attach_analysis(record_id, result)
            except StoreError as exc:
                log.error(
                    "Failed to attach analysis",
                    record_id=record_id,
                    device_id=record.device_id,
                    error=str(exc),
                )
                continue
            summary.analyzed += 1

        log.info(
            "Telemetry batch ingested",
            stored=summary.stored,
            flagged=summary.flagged,
            analyzed=summary.analyzed,
        )
        return summary
