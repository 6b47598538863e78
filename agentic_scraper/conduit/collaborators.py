"""Contracts of the external collaborators the Conduit drives.

The Conduit depends only on these shapes; the Playwright page provider and
the Gemini content generator are the production implementations, and tests
substitute counting fakes.
"""

from __future__ import annotations

from typing import Any, Protocol

from agentic_scraper.conduit.models import (
    ExtractionArtifact,
    Observation,
    PageAnalysis,
    PageSnapshot,
)


class PageProvider(Protocol):
    async def open(self, url: str, timeout_s: float) -> PageSnapshot:
        """Return a settled snapshot or raise NavigationError."""
        ...

    async def observe(self, snapshot: PageSnapshot, label: str) -> Observation: ...

    async def close(self, snapshot: PageSnapshot) -> None:
        """Release the snapshot's live resources. Idempotent."""
        ...


class ContentGenerator(Protocol):
    async def propose(self, html: str, goal: str, url: str) -> ExtractionArtifact:
        """Return an initial artifact or raise GenerationError."""
        ...

    async def repair(
        self,
        html: str,
        artifact: ExtractionArtifact,
        diagnostic: str,
        raw_output: Any,
    ) -> ExtractionArtifact:
        """Return a replacement artifact or raise GenerationError."""
        ...

    async def analyze(self, html: str, url: str) -> PageAnalysis: ...
