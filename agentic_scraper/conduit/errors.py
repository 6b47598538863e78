"""Exception taxonomy of the extraction lifecycle."""

from __future__ import annotations


class ConduitError(Exception):
    """Raised when the Conduit is driven through an invalid transition."""


class NavigationError(Exception):
    """The page could not be acquired. Fatal to the request, zero attempts."""


class GenerationError(Exception):
    """The content generator could not produce an artifact or analysis."""


class StructuralArtifactError(Exception):
    """An artifact's schema does not compile or its routine does not load."""
