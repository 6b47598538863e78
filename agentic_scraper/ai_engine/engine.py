"""AI Engine — content generator backed by Vertex AI Gemini.

The AI Engine provides intelligence without authority. The Conduit hands it
page HTML and failure diagnostics; it returns artifacts (schema description
plus extraction routine) and page analyses. It never runs what it writes:
every artifact is checked by the Conduit and executed by the Sandbox.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from agentic_scraper.conduit.errors import GenerationError
from agentic_scraper.conduit.models import ExtractionArtifact, PageAnalysis
from agentic_scraper.config.settings import VertexConfig
from agentic_scraper.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

SCHEMA_LANGUAGE_GUIDE = """\
The schema is a JSON object. Every node has a "type" and may set
"optional": true (the key may be absent) and "nullable": true (the value may be null).
  {"type": "string", "min_length"?, "max_length"?, "pattern"?, "trim"?, "coerce"?}
  {"type": "number", "minimum"?, "maximum"?, "coerce"?}
  {"type": "integer", "minimum"?, "maximum"?, "coerce"?}
  {"type": "boolean", "coerce"?}
  {"type": "literal", "values": [...]}
  {"type": "array", "items": <node>, "min_items"?, "max_items"?}
  {"type": "object", "properties": {"key": <node>, ...}, "additional"?: "strip"|"allow"|"forbid"}
  {"type": "union", "any_of": [<node>, <node>, ...]}
  {"type": "any"}
"coerce": true accepts numeric text for numbers and numbers for strings."""

ROUTINE_GUIDE = """\
The extraction routine is the BODY of a Python function: it must `return` the
extracted value. It runs in a sandbox with no imports, no classes, no `with`,
no `global`, and no names or attributes starting with an underscore.
Available names:
  document                       root Element of the page
  select(css) -> Element | None  first match in the document
  select_all(css) -> [Element]   all matches in the document
  get_text(el) -> str            whitespace-normalized text ("" for None)
  get_attribute(el, name) -> str attribute value ("" when absent)
  get_inner_html(el) -> str      inner HTML ("" for None)
  log(...) / print(...)          diagnostic output
Element: .text .tag_name .inner_html .outer_html .attributes .attr(name, default="")
         .select(css) .select_all(css) .parent() .children()
Plain builtins (len, int, float, str, list, dict, range, sorted, enumerate, ...)
are available. Loops are metered; keep routines simple."""

ANALYSIS_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "description": {"type": "string"},
        "key_elements": {"type": "array", "items": {"type": "string"}},
        "data_patterns": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["title", "description"],
}


def truncate_html(html: str, limit: int) -> str:
    if len(html) <= limit:
        return html
    return html[:limit] + "... (truncated)"


def parse_json_response(text: str) -> Any:
    """Parse a JSON-mode response, tolerating a Markdown code fence."""
    body = text.strip()
    if body.startswith("```"):
        body = body.split("\n", 1)[1] if "\n" in body else ""
        body = body.rsplit("```", 1)[0]
    return json.loads(body)


class GeminiContentGenerator:
    """Content generator client for Vertex AI Gemini.

    Stateless between calls; the Conduit owns all request state. A client
    object exposing ``generate_content_async`` may be injected instead of
    calling ``initialize``.
    """

    def __init__(self, config: VertexConfig | None = None, client: Any = None) -> None:
        self._config = config or VertexConfig()
        self._client = client

    def initialize(self) -> bool:
        """Initialize the Vertex AI client. Returns False when it cannot be built."""
        if self._client is not None:
            return True
        if not self._config.project_id:
            return False

        try:
            import vertexai
            from vertexai.generative_models import GenerativeModel

            vertexai.init(
                project=self._config.project_id,
                location=self._config.location,
            )
            self._client = GenerativeModel(self._config.model)
            return True
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.GENERATOR_INITIALIZATION_FAILED,
                message=str(exc),
                suppressed=True,
            )
            return False

    @property
    def is_available(self) -> bool:
        return self._client is not None

    async def propose(self, html: str, goal: str, url: str) -> ExtractionArtifact:
        """Generate fixtures, a schema description and an extraction routine."""
        goal_text = f" ({goal})" if goal else ""
        prompt = (
            "You are an expert data extraction specialist. Your task is to:\n"
            "  1. Identify the key structured data on the page below\n"
            "  2. Write example data (fixtures) representing that data\n"
            "  3. Write a schema describing and validating it\n"
            "  4. Write an extraction routine that returns it from the page\n\n"
            f"Schema language:\n{SCHEMA_LANGUAGE_GUIDE}\n\n"
            f"Extraction routine language:\n{ROUTINE_GUIDE}\n\n"
            "Return JSON: {fixtures: [...], schema: <schema as a JSON string>, "
            "routine: <routine source>, explanation: <brief approach>}.\n\n"
            f"Page URL: {url}{goal_text}\n\n"
            f"HTML:\n{truncate_html(html, self._config.propose_html_chars)}"
        )
        data = await self._generate(prompt, ErrorCode.GENERATION_FAILED)
        return self._artifact_from(data, ErrorCode.GENERATION_FAILED)

    async def repair(
        self,
        html: str,
        artifact: ExtractionArtifact,
        diagnostic: str,
        raw_output: Any,
    ) -> ExtractionArtifact:
        """Produce a replacement artifact from exactly one failure."""
        try:
            scraped = json.dumps(raw_output, indent=2, default=str)
        except (TypeError, ValueError):
            scraped = repr(raw_output)

        prompt = (
            "You are an expert data extraction specialist. The current extraction "
            "failed. Fix the schema, the routine, or both, based on the failure below.\n\n"
            f"Schema language:\n{SCHEMA_LANGUAGE_GUIDE}\n\n"
            f"Extraction routine language:\n{ROUTINE_GUIDE}\n\n"
            f"Current schema:\n{artifact.schema_description}\n\n"
            f"Current routine:\n{artifact.extraction_routine}\n\n"
            f"Failure:\n{diagnostic}\n\n"
            f"Routine output:\n{scraped}\n\n"
            "Return JSON: {fixtures: [...], schema: <schema as a JSON string>, "
            "routine: <routine source>, explanation: <what was wrong and how you fixed it>}.\n\n"
            f"HTML:\n{truncate_html(html, self._config.repair_html_chars)}"
        )
        data = await self._generate(prompt, ErrorCode.REPAIR_FAILED)
        return self._artifact_from(data, ErrorCode.REPAIR_FAILED)

    async def analyze(self, html: str, url: str) -> PageAnalysis:
        """Describe the page structure and its repeating data patterns."""
        prompt = (
            "You are an expert web analyst. Analyze the HTML below and describe "
            "its structure.\n\n"
            "Focus on:\n"
            "  1. Page title and main purpose\n"
            "  2. Key data elements and their structure\n"
            "  3. Repeating patterns that might contain structured data\n"
            "  4. CSS classes and IDs usable as selectors\n\n"
            "Return JSON: {title, description, key_elements: [...], data_patterns: [...]}.\n\n"
            f"Page URL: {url}\n\n"
            f"HTML:\n{truncate_html(html, self._config.analysis_html_chars)}"
        )
        data = await self._generate(
            prompt, ErrorCode.ANALYSIS_FAILED, response_schema=ANALYSIS_RESPONSE_SCHEMA
        )
        try:
            return PageAnalysis.model_validate(data)
        except ValidationError as exc:
            self._report(ErrorCode.ANALYSIS_FAILED, str(exc))
            raise GenerationError(f"Malformed page analysis: {exc}") from exc

    async def _generate(
        self, prompt: str, code: ErrorCode, response_schema: dict[str, Any] | None = None
    ) -> Any:
        if not self.is_available:
            raise GenerationError("Content generator is not initialized")

        try:
            from vertexai.generative_models import GenerationConfig

            response = await self._client.generate_content_async(
                prompt,
                generation_config=GenerationConfig(
                    temperature=self._config.temperature,
                    response_mime_type="application/json",
                    response_schema=response_schema,
                ),
            )
            return parse_json_response(response.text)
        except Exception as exc:
            self._report(code, str(exc))
            raise GenerationError(f"Generation request failed: {exc}") from exc

    def _artifact_from(self, data: Any, code: ErrorCode) -> ExtractionArtifact:
        if not isinstance(data, dict):
            self._report(code, f"expected an object, got {type(data).__name__}")
            raise GenerationError("Generator response is not a JSON object")
        try:
            return ExtractionArtifact.model_validate(data)
        except ValidationError as exc:
            self._report(code, str(exc))
            raise GenerationError(f"Malformed artifact: {exc}") from exc

    @staticmethod
    def _report(code: ErrorCode, message: str) -> None:
        emit_structured_error(logger, code=code, message=message, suppressed=False)
