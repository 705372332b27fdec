from __future__ import annotations


class TitleFinderError(Exception):
    """Base class for errors raised by the title finder service."""


class MalformedRequestError(TitleFinderError):
    """Raised when a chat request is missing required input."""


class ReasoningServiceError(TitleFinderError):
    """Raised when a call to the reasoning service fails or times out."""


class CatalogError(TitleFinderError):
    """Raised when the job-title catalog cannot be loaded."""


class WebsiteFetchError(TitleFinderError):
    """Raised when a website cannot be fetched for scanning."""
