"""Agentic scraper configuration settings."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


def _optional_path_env(var_name: str) -> Path | None:
    raw = os.getenv(var_name, "").strip()
    return Path(raw) if raw else None


class VertexConfig(BaseModel):
    """Vertex AI configuration for the content generator."""

    project_id: str = Field(default_factory=lambda: os.getenv("VERTEX_PROJECT_ID", ""))
    location: str = Field(default_factory=lambda: os.getenv("VERTEX_LOCATION", "us-central1"))
    credentials_path: str = Field(
        default_factory=lambda: os.getenv("GOOGLE_APPLICATION_CREDENTIALS", "")
    )
    model: str = Field(default_factory=lambda: os.getenv("SCRAPER_MODEL", "gemini-2.5-pro"))
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    propose_html_chars: int = 8000
    repair_html_chars: int = 5000
    analysis_html_chars: int = 10000


class RetryConfig(BaseModel):
    """Attempt budget and failure routing."""

    max_retries: int = Field(
        default_factory=lambda: int(os.getenv("SCRAPER_MAX_RETRIES", "5"))
    )
    # "repair": an ExecutionFailure is sent to the generator like a validation failure.
    # "retry": the same artifact is run again without a generator call.
    execution_failure_policy: Literal["repair", "retry"] = "repair"

    @field_validator("max_retries")
    @classmethod
    def _validate_max_retries(cls, value: int) -> int:
        if value < 1:
            raise ValueError("SCRAPER_MAX_RETRIES must be >= 1")
        return value


class TimeoutConfig(BaseModel):
    """Timeout budgets for the three suspension points of a request."""

    page_load_timeout_s: float = 30.0
    generation_timeout_s: float = 120.0
    execution_timeout_s: float = 10.0


class BrowserConfig(BaseModel):
    """Page provider configuration."""

    headless: bool = Field(
        default_factory=lambda: os.getenv("SCRAPER_HEADLESS", "true").lower() != "false"
    )
    slow_mo_ms: int = 0
    viewport_width: int = 1280
    viewport_height: int = 720
    user_agent: str | None = DEFAULT_USER_AGENT
    locale: str = "en-US"
    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = "networkidle"
    settle_ms: int = 2000


class SandboxConfig(BaseModel):
    """Limits applied to extraction routines."""

    max_steps: int = Field(default=100_000, ge=1)
    # per-operation caps for *, ** and + on sequences and integers
    max_sequence_length: int = Field(default=1_000_000, ge=1)
    max_int_bits: int = Field(default=100_000, ge=64)
    sanitize: bool = True
    max_log_lines: int = 200


class ObservationConfig(BaseModel):
    """Where and how labeled page observations are captured."""

    enabled: bool = True
    screenshot_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("SCRAPER_SCREENSHOT_DIR", "./screenshots"))
    )
    full_page: bool = True


class ScraperConfig(BaseModel):
    """Root configuration shared by every request of one scraper instance."""

    vertex: VertexConfig = Field(default_factory=VertexConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    observations: ObservationConfig = Field(default_factory=ObservationConfig)
    signals_dir: Path | None = Field(
        default_factory=lambda: _optional_path_env("SCRAPER_SIGNALS_DIR")
    )
    max_concurrent_requests: int = Field(
        default_factory=lambda: int(os.getenv("SCRAPER_MAX_CONCURRENT_REQUESTS", "1"))
    )

    @field_validator("max_concurrent_requests")
    @classmethod
    def _validate_concurrency(cls, value: int) -> int:
        if value < 1:
            raise ValueError("SCRAPER_MAX_CONCURRENT_REQUESTS must be >= 1")
        return value
