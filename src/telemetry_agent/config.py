"""Configuration models for the telemetry agent."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClassifierConfig(BaseModel):
    """Selects the keyword rule table and the oracle fallback."""

    variant: Literal["direct", "hybrid"] = "direct"
    use_oracle_fallback: bool = True


class RouterConfig(BaseModel):
    """Configures response shaping and agent execution."""

    structured_responses: bool = False
    max_iterations: int = Field(default=6, ge=1)
    target_latency_seconds: float = Field(default=8.0, gt=0.0)


class PipelineConfig(BaseModel):
    """Configures threshold checks and oracle protection for ingestion."""

    current_threshold: float = Field(default=50.0, gt=0.0)
    oracle_timeout_seconds: float = Field(default=30.0, gt=0.0)
    oracle_cooldown_seconds: float = Field(default=300.0, ge=0.0)


class Settings(BaseSettings):
    """Process-level settings read from the environment and `.env`."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    database_url: str = "sqlite:///telemetry_agent.db"
    current_threshold: float = Field(default=50.0, gt=0.0)
    oracle_timeout_seconds: float = Field(default=30.0, gt=0.0)
    oracle_cooldown_seconds: float = Field(default=300.0, ge=0.0)
    classifier_variant: Literal["direct", "hybrid"] = "hybrid"
    structured_responses: bool = False
    log_level: str = "INFO"
    log_json: bool = False

    def classifier_config(self) -> ClassifierConfig:
        return ClassifierConfig(variant=self.classifier_variant)

    def router_config(self) -> RouterConfig:
        return RouterConfig(structured_responses=self.structured_responses)

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            current_threshold=self.current_threshold,
            oracle_timeout_seconds=self.oracle_timeout_seconds,
            oracle_cooldown_seconds=self.oracle_cooldown_seconds,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
