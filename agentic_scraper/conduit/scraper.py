"""AgenticScraper — entry point that builds one Conduit per request."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from agentic_scraper.browser.layer import ActionResult, ActionStatus, PlaywrightPageProvider
from agentic_scraper.conduit.collaborators import ContentGenerator, PageProvider
from agentic_scraper.conduit.engine import Conduit
from agentic_scraper.conduit.models import (
    BrowserAction,
    ExtractionRequest,
    PageAnalysis,
    ScrapingResult,
)
from agentic_scraper.config.settings import ScraperConfig
from agentic_scraper.sandbox.executor import SandboxExecutor
from agentic_scraper.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class AgenticScraper:
    """Runs extraction requests against shared, stateless collaborators.

    Each request gets a fresh Conduit and its own PageSnapshot; nothing
    mutable is kept here between requests.
    """

    def __init__(
        self,
        config: ScraperConfig | None = None,
        *,
        page_provider: PageProvider | None = None,
        generator: ContentGenerator | None = None,
        executor: SandboxExecutor | None = None,
    ) -> None:
        self._config = config or ScraperConfig()
        self._provider = page_provider or PlaywrightPageProvider(
            self._config.browser, self._config.observations
        )
        if generator is None:
            from agentic_scraper.ai_engine.engine import GeminiContentGenerator

            gemini = GeminiContentGenerator(self._config.vertex)
            if not gemini.initialize():
                logger.warning("Gemini content generator is unavailable; generation will fail")
            generator = gemini
        self._generator = generator
        self._executor = executor or SandboxExecutor(self._config.sandbox)

    @property
    def config(self) -> ScraperConfig:
        return self._config

    def conduit_for(self, request: ExtractionRequest) -> Conduit:
        """Build the Conduit for ``request`` without running it."""
        if request.retry_budget is None:
            request = request.model_copy(update={"retry_budget": self._config.retry.max_retries})
        return Conduit(
            request,
            page_provider=self._provider,
            generator=self._generator,
            executor=self._executor,
            config=self._config,
        )

    async def scrape(self, request: ExtractionRequest) -> ScrapingResult:
        conduit = self.conduit_for(request)
        logger.info(
            "Starting run %s for %s (budget %d)",
            conduit.run_id,
            request.target,
            conduit.retry_budget,
        )
        result = await conduit.run()
        logger.info(
            "Run %s finished: %s after %d attempt(s)",
            result.run_id,
            result.status,
            result.attempts,
        )
        return result

    async def scrape_many(self, requests: Sequence[ExtractionRequest]) -> list[ScrapingResult]:
        """Run independent requests concurrently; results keep the input order."""
        semaphore = asyncio.Semaphore(self._config.max_concurrent_requests)

        async def bounded(request: ExtractionRequest) -> ScrapingResult:
            async with semaphore:
                return await self.scrape(request)

        return list(await asyncio.gather(*(bounded(request) for request in requests)))

    async def analyze_page(self, url: str) -> PageAnalysis:
        """Open ``url`` and ask the generator for a structural analysis.

        Raises:
            NavigationError: the page could not be loaded.
            GenerationError: the generator produced no usable analysis.
        """
        snapshot = await self._provider.open(
            url, timeout_s=self._config.timeouts.page_load_timeout_s
        )
        try:
            if self._config.observations.enabled:
                try:
                    await self._provider.observe(snapshot, "analysis")
                except Exception as exc:
                    emit_structured_error(
                        logger,
                        code=ErrorCode.OBSERVATION_FAILED,
                        message=str(exc),
                        suppressed=True,
                        details={"label": "analysis"},
                    )
            return await asyncio.wait_for(
                self._generator.analyze(snapshot.rendered_html, url),
                timeout=self._config.timeouts.generation_timeout_s,
            )
        finally:
            await self._provider.close(snapshot)

    async def perform_actions(
        self, url: str, actions: Sequence[BrowserAction]
    ) -> list[ActionResult]:
        """Open ``url`` and run ``actions`` in order, stopping at the first failure.

        Requires a page provider that can perform actions (the Playwright one).
        """
        perform = getattr(self._provider, "perform", None)
        if perform is None:
            raise TypeError(f"{type(self._provider).__name__} cannot perform browser actions")

        snapshot = await self._provider.open(
            url, timeout_s=self._config.timeouts.page_load_timeout_s
        )
        results: list[ActionResult] = []
        try:
            for action in actions:
                result = await perform(snapshot, action)
                results.append(result)
                if result.status != ActionStatus.SUCCESS:
                    emit_structured_error(
                        logger,
                        code=ErrorCode.ACTION_EXECUTION_FAILED,
                        message=result.detail,
                        suppressed=True,
                        details={"action": action.type, "selector": action.selector},
                    )
                    break
        finally:
            await self._provider.close(snapshot)
        return results
