"""Table definitions and engine construction for the telemetry store."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Engine,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
)
from sqlalchemy.pool import StaticPool

metadata = MetaData()

device_telemetry = Table(
    "device_telemetry",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("device_id", String, nullable=False, index=True),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("temperature", Float),
    Column("gas", Float),
    Column("current", Float),
    Column("voltage", Float),
    Column("current_threshold", Float),
    Column("severity", String(16)),
    Column("possible_cause", Text),
    Column("recommendation", Text),
    Column("is_threshold_exceeded", Boolean, nullable=False, default=False),
    Column("analysis_timestamp", String),
)

devices = Table(
    "devices",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("device_id", String, nullable=False, unique=True),
    Column("name", String, nullable=False),
    Column("status", String(16), nullable=False, default="active"),
    Column("created_at", DateTime(timezone=True)),
)


def build_engine(database_url: str) -> Engine:
    """Create an engine and make sure the telemetry tables exist.

    SQLite connections are shared across FastAPI's worker threads, and an
    in-memory database has to stay on one connection to keep its tables.
    """

    kwargs: dict[str, object] = {"future": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_engine(database_url, **kwargs)
    metadata.create_all(engine)
    return engine
