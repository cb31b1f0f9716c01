"""Telemetry Agent package."""

from .config import ClassifierConfig, PipelineConfig, RouterConfig

__all__ = ["ClassifierConfig", "PipelineConfig", "RouterConfig"]
