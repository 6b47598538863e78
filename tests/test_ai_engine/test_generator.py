"""Tests for the Gemini content generator with a stand-in model client."""

import json
from types import SimpleNamespace

import pytest

from agentic_scraper.ai_engine.engine import (
    GeminiContentGenerator,
    parse_json_response,
    truncate_html,
)
from agentic_scraper.conduit.errors import GenerationError
from agentic_scraper.conduit.models import ExtractionArtifact
from agentic_scraper.config.settings import VertexConfig


class FakeModel:
    """Records prompts and replies with scripted response texts."""

    def __init__(self, *texts):
        self.texts = list(texts)
        self.prompts = []

    async def generate_content_async(self, prompt, generation_config=None):
        self.prompts.append(prompt)
        reply = self.texts.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(text=reply)


ARTIFACT_REPLY = json.dumps(
    {
        "fixtures": [{"title": "Widget"}],
        "schema": json.dumps({"type": "object", "properties": {"title": {"type": "string"}}}),
        "routine": "return {'title': get_text(select('h1'))}",
        "explanation": "Reads the heading",
    }
)


def make_generator(*texts, **config):
    model = FakeModel(*texts)
    return GeminiContentGenerator(VertexConfig(**config), client=model), model


class TestHelpers:
    def test_truncate_html(self):
        assert truncate_html("abc", 5) == "abc"
        assert truncate_html("abcdef", 3) == "abc... (truncated)"

    def test_parse_plain_json(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_parse_fenced_json(self):
        assert parse_json_response('```json\n{"a": 1}\n```') == {"a": 1}


class TestPropose:
    @pytest.mark.asyncio
    async def test_propose_returns_artifact(self):
        generator, model = make_generator(ARTIFACT_REPLY)
        artifact = await generator.propose("<h1>Widget</h1>", "product title", "https://x.test/")

        assert isinstance(artifact, ExtractionArtifact)
        assert artifact.extraction_routine.startswith("return")
        assert artifact.rationale == "Reads the heading"
        assert "product title" in model.prompts[0]
        assert "<h1>Widget</h1>" in model.prompts[0]

    @pytest.mark.asyncio
    async def test_propose_truncates_html(self):
        generator, model = make_generator(ARTIFACT_REPLY, propose_html_chars=10)
        await generator.propose("<p>" + "x" * 100 + "</p>", "", "https://x.test/")
        assert "... (truncated)" in model.prompts[0]
        assert "x" * 20 not in model.prompts[0]

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self, caplog):
        generator, _ = make_generator("not json at all")
        with pytest.raises(GenerationError):
            await generator.propose("<p/>", "", "https://x.test/")
        assert any(getattr(r, "error_code", None) == "GENERATION_FAILED" for r in caplog.records)

    @pytest.mark.asyncio
    async def test_missing_routine_raises(self):
        generator, _ = make_generator(json.dumps({"schema": '{"type": "any"}'}))
        with pytest.raises(GenerationError, match="Malformed artifact"):
            await generator.propose("<p/>", "", "https://x.test/")

    @pytest.mark.asyncio
    async def test_non_object_reply_raises(self):
        generator, _ = make_generator("[1, 2]")
        with pytest.raises(GenerationError):
            await generator.propose("<p/>", "", "https://x.test/")

    @pytest.mark.asyncio
    async def test_client_error_raises(self):
        generator, _ = make_generator(RuntimeError("429 resource exhausted"))
        with pytest.raises(GenerationError, match="request failed: 429"):
            await generator.propose("<p/>", "", "https://x.test/")

    @pytest.mark.asyncio
    async def test_uninitialized_generator_raises(self):
        generator = GeminiContentGenerator(VertexConfig(project_id=""))
        assert not generator.initialize()
        assert not generator.is_available
        with pytest.raises(GenerationError, match="not initialized"):
            await generator.propose("<p/>", "", "https://x.test/")


class TestRepair:
    @pytest.mark.asyncio
    async def test_repair_prompt_carries_the_failure(self):
        generator, model = make_generator(ARTIFACT_REPLY)
        current = ExtractionArtifact(
            schema_description='{"type": "object", "properties": {"price": {"type": "number"}}}',
            extraction_routine="return {'price': 'n/a'}",
        )
        repaired = await generator.repair(
            "<span>$5</span>", current, "Validation failed:\nprice: Input should be a valid number",
            {"price": "n/a"},
        )

        prompt = model.prompts[0]
        assert repaired.extraction_routine != current.extraction_routine
        assert current.schema_description in prompt
        assert current.extraction_routine in prompt
        assert "price: Input should be a valid number" in prompt
        assert '"price": "n/a"' in prompt


class TestAnalyze:
    @pytest.mark.asyncio
    async def test_analyze(self):
        reply = json.dumps(
            {
                "title": "Shop",
                "description": "Product listing",
                "keyElements": ["ul#products"],
                "dataPatterns": ["li.product"],
            }
        )
        generator, _ = make_generator(reply)
        analysis = await generator.analyze("<ul id='products'></ul>", "https://x.test/")
        assert analysis.title == "Shop"
        assert analysis.key_elements == ["ul#products"]

    @pytest.mark.asyncio
    async def test_analyze_failure(self):
        generator, _ = make_generator("{")
        with pytest.raises(GenerationError):
            await generator.analyze("<p/>", "https://x.test/")
