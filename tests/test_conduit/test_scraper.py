"""Tests for the AgenticScraper facade."""

import pytest

from agentic_scraper.browser.layer import ActionStatus
from agentic_scraper.conduit.errors import NavigationError
from agentic_scraper.conduit.models import BrowserAction, ExtractionRequest
from agentic_scraper.conduit.scraper import AgenticScraper
from conduit_fakes import (
    MISSING_PRICE_ROUTINE,
    FakeGenerator,
    FakePageProvider,
    make_artifact,
)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def scraper(config, page_provider, generator, executor):
    return AgenticScraper(
        config, page_provider=page_provider, generator=generator, executor=executor
    )


class TestScrape:
    @pytest.mark.asyncio
    async def test_scrape(self, scraper, page_provider):
        result = await scraper.scrape(ExtractionRequest(target="https://shop.example.com/w"))
        assert result.success
        assert result.data == {"title": "Widget", "price": 9.99}
        assert page_provider.close_calls == 1

    def test_conduit_for_resolves_budget(self, scraper):
        conduit = scraper.conduit_for(ExtractionRequest(target="https://shop.example.com/w"))
        assert conduit.retry_budget == scraper.config.retry.max_retries

        conduit = scraper.conduit_for(
            ExtractionRequest(target="https://shop.example.com/w", retry_budget=1)
        )
        assert conduit.retry_budget == 1

    def test_each_request_gets_its_own_conduit(self, scraper):
        request = ExtractionRequest(target="https://shop.example.com/w")
        assert scraper.conduit_for(request).run_id != scraper.conduit_for(request).run_id

    @pytest.mark.asyncio
    async def test_scrape_many_keeps_order(self, scraper, generator, page_provider):
        generator.proposal = make_artifact(MISSING_PRICE_ROUTINE)
        requests = [
            ExtractionRequest(target=f"https://shop.example.com/{n}", retry_budget=1)
            for n in range(4)
        ]
        results = await scraper.scrape_many(requests)

        assert len(results) == 4
        assert all(r.status == "EXHAUSTED" for r in results)
        assert len({r.run_id for r in results}) == 4
        assert page_provider.open_calls == 4
        assert page_provider.close_calls == 4


class TestAnalyzePage:
    @pytest.mark.asyncio
    async def test_analyze_page(self, scraper, generator, page_provider):
        analysis = await scraper.analyze_page("https://shop.example.com/w")
        assert analysis.title == "Widget"
        assert generator.analyze_calls == 1
        assert page_provider.observed == ["analysis"]
        assert page_provider.close_calls == 1

    @pytest.mark.asyncio
    async def test_analyze_page_navigation_failure(self, scraper, page_provider):
        page_provider.open_error = NavigationError("timeout")
        with pytest.raises(NavigationError):
            await scraper.analyze_page("https://shop.example.com/w")
        assert page_provider.close_calls == 0


class TestPerformActions:
    @pytest.mark.asyncio
    async def test_runs_actions_in_order(self, scraper, page_provider):
        actions = [
            BrowserAction(type="click", selector="#load-more"),
            BrowserAction(type="scroll"),
            BrowserAction(type="wait", delay_ms=100),
        ]
        results = await scraper.perform_actions("https://shop.example.com/w", actions)
        assert [r.status for r in results] == [ActionStatus.SUCCESS] * 3
        assert page_provider.performed == ["click", "scroll", "wait"]
        assert page_provider.close_calls == 1

    @pytest.mark.asyncio
    async def test_stops_at_first_failure(self, scraper, page_provider):
        page_provider.fail_actions = {"hover"}
        actions = [
            BrowserAction(type="hover", selector=".menu"),
            BrowserAction(type="click", selector=".menu a"),
        ]
        results = await scraper.perform_actions("https://shop.example.com/w", actions)
        assert len(results) == 1
        assert results[0].status == ActionStatus.FAILURE
        assert page_provider.performed == ["hover"]
        assert page_provider.close_calls == 1

    @pytest.mark.asyncio
    async def test_requires_action_capable_provider(self, config, generator, executor):
        class ObserveOnlyProvider(FakePageProvider):
            perform = None

        scraper = AgenticScraper(
            config, page_provider=ObserveOnlyProvider(), generator=generator, executor=executor
        )
        with pytest.raises(TypeError):
            await scraper.perform_actions("https://shop.example.com/w", [])
