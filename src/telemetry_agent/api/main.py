"""FastAPI entrypoint for chat, telemetry ingestion and trace endpoints."""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from telemetry_agent.agent.classifier import QueryClassifier
from telemetry_agent.agent.planner import SQL_ANALYST_PROMPT, ReasoningAgent
from telemetry_agent.agent.registry import ToolRegistry
from telemetry_agent.agent.router import QueryRouter
from telemetry_agent.agent.tools import register_builtin_tools, register_store_tools
from telemetry_agent.config import Settings, get_settings
from telemetry_agent.errors import StoreError
from telemetry_agent.ingest.analyzer import AnomalyAnalyzer
from telemetry_agent.ingest.breaker import OracleCircuitBreaker
from telemetry_agent.ingest.pipeline import TelemetryPipeline
from telemetry_agent.obs.logging_setup import configure_logging
from telemetry_agent.obs.tracing import TraceStore
from telemetry_agent.oracle.client import ReasoningOracle, create_chat_model
from telemetry_agent.store.schema import build_engine
from telemetry_agent.store.structured import StructuredStore
from telemetry_agent.store.telemetry import TelemetryRepository
from telemetry_agent.types import TelemetryRecord, is_number

logger = structlog.get_logger()


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1)
    session_id: str | None = Field(default=None, alias="sessionId")


class TelemetryIn(BaseModel):
    """Inbound reading; numeric fields that are absent or unparseable stay None."""

    device_id: str = Field(validation_alias=AliasChoices("deviceId", "device_id"))
    timestamp: datetime | None = None
    temperature: float | None = None
    gas: float | None = None
    current: float | None = None
    voltage: float | None = None
    current_threshold: float | None = Field(
        default=None,
        validation_alias=AliasChoices("threshold", "current_threshold", "CURRENT_THRESHOLD"),
    )

    @field_validator("device_id", mode="before")
    @classmethod
    def _device_id_as_text(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator(
        "temperature", "gas", "current", "voltage", "current_threshold", mode="before"
    )
    @classmethod
    def _lenient_number(cls, value: Any) -> Any:
        return float(value) if is_number(value) else None

    def to_record(self) -> TelemetryRecord:
        return TelemetryRecord(
            device_id=self.device_id,
            timestamp=self.timestamp,
            temperature=self.temperature,
            gas=self.gas,
            current=self.current,
            voltage=self.voltage,
            current_threshold=self.current_threshold,
        )


def create_app(settings: Settings | None = None, *, llm: Any | None = None) -> FastAPI:
    """Wire store, oracle, router and pipeline into a FastAPI application.

    Without an LLM (no `OPENAI_API_KEY` and none passed in) the app still
    serves keyword-routed questions and analyzes telemetry with the
    threshold fallback.
    """

    settings = settings or get_settings()
    configure_logging(settings.log_level, json_output=settings.log_json)

    engine = build_engine(settings.database_url)
    store = StructuredStore(engine)
    repository = TelemetryRepository(engine)

    if llm is None:
        llm = create_chat_model(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            timeout_seconds=settings.oracle_timeout_seconds,
        )
    oracle = (
        ReasoningOracle(llm, timeout_seconds=settings.oracle_timeout_seconds)
        if llm is not None
        else None
    )

    analyst = None
    if oracle is not None:
        store_registry = ToolRegistry()
        register_store_tools(store_registry, store)
        analyst = ReasoningAgent(
            llm=llm,
            tool_registry=store_registry,
            oracle=oracle,
            system_prompt=SQL_ANALYST_PROMPT,
        ).run

    registry = ToolRegistry()
    register_builtin_tools(registry, store, repository, analyst=analyst)

    router_config = settings.router_config()
    agent = (
        ReasoningAgent(llm=llm, tool_registry=registry, oracle=oracle, config=router_config)
        if oracle is not None
        else None
    )
    trace_store = TraceStore()
    router = QueryRouter(
        tool_registry=registry,
        classifier=QueryClassifier(oracle=oracle, config=settings.classifier_config()),
        oracle=oracle,
        agent=agent,
        trace_store=trace_store,
        config=router_config,
    )

    pipeline_config = settings.pipeline_config()
    breaker = OracleCircuitBreaker(pipeline_config.oracle_cooldown_seconds)
    pipeline = TelemetryPipeline(
        repository,
        AnomalyAnalyzer(oracle=oracle, breaker=breaker, config=pipeline_config),
        pipeline_config,
    )

    app = FastAPI(title="Telemetry Agent", version="0.1.0")

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "oracle_configured": oracle is not None,
            "planner_mode": "langchain" if agent is not None else "deterministic",
            "oracle_blocked": breaker.is_open,
            "trace_count": trace_store.summary()["total_requests"],
        }

    @app.post("/api/chat")
    def chat(request: ChatRequest) -> dict[str, Any]:
        session_id = request.session_id or "default"
        response = router.handle(request.message, session_id=session_id)
        return {
            "reply": response.content,
            "sessionId": session_id,
            "classification": (
                response.classification.as_dict() if response.classification else None
            ),
            "trace_id": response.trace_id,
        }

    @app.post("/api/telemetry")
    def ingest(batch: list[TelemetryIn]) -> dict[str, Any]:
        try:
            summary = pipeline.ingest([item.to_record() for item in batch])
        except StoreError as exc:
            logger.error("Telemetry ingestion failed", error=str(exc))
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return asdict(summary)

    @app.get("/api/telemetry/{record_id}")
    def telemetry_detail(record_id: int) -> dict[str, Any]:
        try:
            row = repository.get(record_id)
        except StoreError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        if row is None:
            raise HTTPException(status_code=404, detail=f"Record not found: {record_id}")
        return row

    @app.get("/traces")
    def traces(limit: int = 20) -> dict[str, Any]:
        records = [asdict(record) for record in trace_store.list_recent(limit=limit)]
        return {"items": records}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return trace_store.summary()

    return app


app = create_app()
