"""Data model of an extraction request — from request to ScrapingResult."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union
from urllib.parse import urlparse

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class ExtractionRequest(BaseModel):
    """What to extract and from where. Immutable once a request begins."""

    model_config = ConfigDict(frozen=True)

    target: str
    goal: str = ""
    retry_budget: int | None = Field(default=None, ge=1)

    @field_validator("target")
    @classmethod
    def _http_target(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(f"target must be an http(s) URL, got {value!r}")
        return value


@dataclass
class PageSnapshot:
    """Rendered page content plus the live handle it was captured from."""

    url: str
    rendered_html: str
    handle: Any = None
    title: str = ""
    dom_hash: str = ""

    def __post_init__(self) -> None:
        if not self.dom_hash:
            self.dom_hash = PageSnapshot.compute_hash(self.rendered_html)

    @staticmethod
    def compute_hash(html: str) -> str:
        return hashlib.sha256(html.encode()).hexdigest()[:16]


class ExtractionArtifact(BaseModel):
    """Schema description + extraction routine + fixtures from the generator.

    Accepts the field names generators commonly use (``schema``,
    ``scraperCode``, ``explanation``). A schema given as a JSON object is
    stored in its serialized form.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    schema_description: str = Field(
        validation_alias=AliasChoices("schema_description", "schema")
    )
    extraction_routine: str = Field(
        validation_alias=AliasChoices(
            "extraction_routine", "routine", "scraper_code", "scraperCode"
        )
    )
    fixtures: list[Any] = Field(default_factory=list)
    rationale: str | None = Field(
        default=None, validation_alias=AliasChoices("rationale", "explanation")
    )

    @field_validator("schema_description", mode="before")
    @classmethod
    def _serialize_schema(cls, value: Any) -> Any:
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return value


class AttemptSuccess(BaseModel):
    kind: Literal["success"] = "success"
    value: Any = None


class ExecutionFailure(BaseModel):
    kind: Literal["execution_failure"] = "execution_failure"
    reason: str
    structural: bool = False  # the artifact never loaded, nothing ran

    @property
    def diagnostic(self) -> str:
        return f"Scraper execution error: {self.reason}"


class ValidationFailure(BaseModel):
    kind: Literal["validation_failure"] = "validation_failure"
    diagnostic: str
    raw_value: Any = None


AttemptOutcome = Annotated[
    Union[AttemptSuccess, ExecutionFailure, ValidationFailure],
    Field(discriminator="kind"),
]


class Attempt(BaseModel):
    """One execute-and-validate cycle. Attempts are append-only."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=1)
    outcome: AttemptOutcome
    artifact_revision: int = 0
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return isinstance(self.outcome, AttemptSuccess)


class Observation(BaseModel):
    """A labeled capture of page state. Never consulted by control flow."""

    model_config = ConfigDict(frozen=True)

    label: str
    reference: str | None = None
    captured_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ScrapingResult(BaseModel):
    """Terminal value of a request; the only thing a request returns."""

    run_id: str
    status: str
    success: bool
    data: Any = None
    artifact: ExtractionArtifact | None = None
    attempts: int = Field(default=0, ge=0)
    history: list[Attempt] = Field(default_factory=list)
    errors: list[str] | None = None
    observations: list[Observation] = Field(default_factory=list)
    html: str | None = None
    duration_s: float = 0.0


class PageAnalysis(BaseModel):
    """Structural overview of a page produced by the content generator."""

    title: str = ""
    description: str = ""
    key_elements: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("key_elements", "keyElements")
    )
    data_patterns: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("data_patterns", "dataPatterns")
    )

    model_config = ConfigDict(populate_by_name=True)


class BrowserAction(BaseModel):
    """A typed interaction to perform on an open page."""

    type: Literal["click", "type", "scroll", "wait", "screenshot", "hover", "press"]
    selector: str | None = None
    text: str | None = None
    delay_ms: int | None = Field(default=None, ge=0)
    description: str = ""
