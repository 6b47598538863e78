"""Structured error telemetry helpers."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Canonical error codes for operational telemetry."""

    GENERATOR_INITIALIZATION_FAILED = "GENERATOR_INITIALIZATION_FAILED"
    GENERATION_FAILED = "GENERATION_FAILED"
    REPAIR_FAILED = "REPAIR_FAILED"
    ANALYSIS_FAILED = "ANALYSIS_FAILED"
    ARTIFACT_REJECTED = "ARTIFACT_REJECTED"
    ROUTINE_EXECUTION_FAILED = "ROUTINE_EXECUTION_FAILED"
    NAVIGATION_FAILED = "NAVIGATION_FAILED"
    OBSERVATION_FAILED = "OBSERVATION_FAILED"
    ACTION_EXECUTION_FAILED = "ACTION_EXECUTION_FAILED"
    SIGNAL_SUBSCRIBER_FAILURE = "SIGNAL_SUBSCRIBER_FAILURE"
    SIGNAL_PERSIST_FAILED = "SIGNAL_PERSIST_FAILED"
    SNAPSHOT_RELEASE_FAILED = "SNAPSHOT_RELEASE_FAILED"
    CONDUIT_UNHANDLED_EXCEPTION = "CONDUIT_UNHANDLED_EXCEPTION"


def emit_structured_error(
    logger: logging.Logger,
    *,
    code: ErrorCode,
    message: str,
    suppressed: bool,
    run_id: str | None = None,
    phase: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit a structured telemetry event via logging."""
    logger.error(
        "scraper_error",
        extra={
            "error_code": code,
            "error_message": message,
            "suppressed": suppressed,
            "run_id": run_id,
            "phase": phase,
            "details": details or {},
        },
    )
