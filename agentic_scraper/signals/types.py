"""Signal type definitions for the request audit ledger."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SignalType(str, Enum):
    """All signal types emitted while a request runs."""

    PHASE_TRANSITION = "PHASE_TRANSITION"
    GENERATION_REQUESTED = "GENERATION_REQUESTED"
    GENERATION_COMPLETED = "GENERATION_COMPLETED"
    ARTIFACT_REJECTED = "ARTIFACT_REJECTED"
    ATTEMPT_RECORDED = "ATTEMPT_RECORDED"
    OBSERVATION_CAPTURED = "OBSERVATION_CAPTURED"
    RETRY_ATTEMPT = "RETRY_ATTEMPT"
    RUN_COMPLETE = "RUN_COMPLETE"
    RUN_FAILED = "RUN_FAILED"
    RUN_CANCELLED = "RUN_CANCELLED"


class Signal(BaseModel):
    """An immutable signal emitted during a request.

    Signals are append-only and cannot be modified after emission.
    They describe what happened; the conduit never reads them back.
    """

    sequence: int = Field(description="Monotonic sequence number within the run")
    signal_type: SignalType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    run_id: str
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
