"""Browser Layer — Playwright page provider for the Conduit.

The Browser Layer has no decision-making authority. It renders pages,
captures observations and runs typed actions. Each opened page lives in its
own browser, context and page, so concurrent requests never share state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from playwright.async_api import Browser, BrowserContext, Page, async_playwright

from agentic_scraper.conduit.errors import NavigationError
from agentic_scraper.conduit.models import BrowserAction, Observation, PageSnapshot
from agentic_scraper.config.settings import BrowserConfig, ObservationConfig

logger = logging.getLogger(__name__)

ACTION_TIMEOUT_MS = 10000


class ActionStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


@dataclass
class ActionResult:
    """Result of a browser action."""

    action: str
    status: ActionStatus
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status == ActionStatus.SUCCESS


@dataclass
class BrowserSession:
    """Live Playwright resources behind one PageSnapshot."""

    playwright: Any = None
    browser: Browser | None = None
    context: BrowserContext | None = None
    page: Page | None = None
    closed: bool = False


class PlaywrightPageProvider:
    """Playwright-based page provider.

    Contract:
    - ``open`` returns a settled PageSnapshot or raises NavigationError
    - ``observe`` never changes the page
    - ``close`` releases everything ``open`` started and may be called twice
    """

    def __init__(
        self,
        config: BrowserConfig | None = None,
        observations: ObservationConfig | None = None,
    ) -> None:
        self._config = config or BrowserConfig()
        self._observations = observations or ObservationConfig()

    async def open(self, url: str, timeout_s: float) -> PageSnapshot:
        """Launch an isolated browser, navigate, settle and capture the DOM."""
        session = BrowserSession()
        try:
            session.playwright = await async_playwright().start()
            session.browser = await session.playwright.chromium.launch(
                headless=self._config.headless,
                slow_mo=self._config.slow_mo_ms,
            )
            session.context = await session.browser.new_context(
                viewport={
                    "width": self._config.viewport_width,
                    "height": self._config.viewport_height,
                },
                user_agent=self._config.user_agent,
                locale=self._config.locale,
            )
            session.page = await session.context.new_page()

            await session.page.goto(
                url,
                wait_until=self._config.wait_until,
                timeout=int(timeout_s * 1000),
            )
            if self._config.settle_ms > 0:
                await session.page.wait_for_timeout(self._config.settle_ms)

            html = await session.page.content()
            title = await session.page.title()
        except Exception as e:
            await self._teardown(session)
            raise NavigationError(f"Failed to load {url}: {e}") from e

        logger.info("Loaded %s (%d bytes of HTML)", url, len(html))
        return PageSnapshot(url=session.page.url, rendered_html=html, handle=session, title=title)

    async def observe(self, snapshot: PageSnapshot, label: str) -> Observation:
        """Save a screenshot named after ``label`` and return its reference."""
        page = self._page(snapshot)
        directory = self._observations.screenshot_dir
        directory.mkdir(parents=True, exist_ok=True)

        captured_at = datetime.now(timezone.utc)
        path = directory / f"{label}-{captured_at.strftime('%Y%m%dT%H%M%S%f')}.png"
        await page.screenshot(path=str(path), full_page=self._observations.full_page)
        return Observation(label=label, reference=str(path), captured_at=captured_at)

    async def close(self, snapshot: PageSnapshot) -> None:
        session = snapshot.handle
        if not isinstance(session, BrowserSession) or session.closed:
            return
        await self._teardown(session)

    async def perform(self, snapshot: PageSnapshot, action: BrowserAction) -> ActionResult:
        """Execute one typed action on the snapshot's page."""
        page = self._page(snapshot)
        try:
            detail = await self._dispatch(page, action)
        except Exception as e:
            status = ActionStatus.TIMEOUT if "Timeout" in type(e).__name__ else ActionStatus.FAILURE
            return ActionResult(action=action.type, status=status, detail=str(e))
        return ActionResult(action=action.type, status=ActionStatus.SUCCESS, detail=detail)

    async def _dispatch(self, page: Page, action: BrowserAction) -> str:
        if action.type in ("click", "type", "hover") and not action.selector:
            raise ValueError(f"{action.type} requires a selector")

        if action.type == "click":
            await page.click(action.selector, timeout=ACTION_TIMEOUT_MS)
            detail = f"Clicked {action.selector}"
        elif action.type == "type":
            await page.fill(action.selector, action.text or "", timeout=ACTION_TIMEOUT_MS)
            detail = f"Filled {action.selector}"
        elif action.type == "hover":
            await page.hover(action.selector, timeout=ACTION_TIMEOUT_MS)
            detail = f"Hovered {action.selector}"
        elif action.type == "scroll":
            if action.selector:
                await page.locator(action.selector).scroll_into_view_if_needed(
                    timeout=ACTION_TIMEOUT_MS
                )
                detail = f"Scrolled to {action.selector}"
            else:
                await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
                detail = "Scrolled to end"
        elif action.type == "wait":
            if action.selector:
                await page.wait_for_selector(action.selector, timeout=ACTION_TIMEOUT_MS)
                detail = f"Element {action.selector} appeared"
            else:
                await page.wait_for_timeout(action.delay_ms or 1000)
                detail = f"Waited {action.delay_ms or 1000}ms"
        elif action.type == "press":
            await page.keyboard.press(action.text or "Enter")
            detail = f"Pressed {action.text or 'Enter'}"
        else:
            directory = self._observations.screenshot_dir
            directory.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
            path = directory / f"action-{stamp}.png"
            await page.screenshot(path=str(path), full_page=self._observations.full_page)
            detail = str(path)

        if action.delay_ms and action.type != "wait":
            await page.wait_for_timeout(action.delay_ms)
        return detail

    @staticmethod
    def _page(snapshot: PageSnapshot) -> Page:
        session = snapshot.handle
        if not isinstance(session, BrowserSession) or session.closed or session.page is None:
            raise RuntimeError("Snapshot has no open page")
        return session.page

    @staticmethod
    async def _teardown(session: BrowserSession) -> None:
        """Close context, browser and driver; the first failure propagates."""
        session.closed = True
        try:
            if session.context:
                await session.context.close()
            if session.browser:
                await session.browser.close()
        finally:
            if session.playwright:
                await session.playwright.stop()
            session.context = None
            session.browser = None
            session.playwright = None
            session.page = None
