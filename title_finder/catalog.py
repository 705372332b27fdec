from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional, Tuple

from .errors import CatalogError

logger = logging.getLogger("title_finder.catalog")


def parse_titles(text: str) -> Tuple[str, ...]:
    """Purpose: Parse catalog file content into an ordered tuple of titles.
    Inputs/Outputs: Input is the raw file text; output is a tuple of titles.
    Side Effects / State: None; pure function.
    Dependencies: Used by load_titles.
    Failure Modes: Returns an empty tuple when the text has only a header.
    If Removed: The catalog cannot be built from the CSV export.
    Testing Notes: Ensure the header is skipped and blank/whitespace lines dropped.
    """
    # Skip the header line, trim each row, and drop empty rows.
    lines = text.lstrip("\ufeff").splitlines()[1:]
    return tuple(line.strip() for line in lines if line.strip())


def load_titles(path: Path) -> Tuple[str, ...]:
    # Read the catalog file once at startup.
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise CatalogError(f"Job title catalog not found: {path}") from exc
    except UnicodeDecodeError as exc:
        raise CatalogError(f"Job title catalog is not valid UTF-8: {path} (byte {exc.start})") from exc
    return parse_titles(text)


class TitleCatalog:
    """Read-only catalog of ad-targetable job titles shared across requests."""

    def __init__(self, titles: Iterable[str]) -> None:
        """Purpose: Freeze the title list and build a case-insensitive lookup.
        Inputs/Outputs: Input is an iterable of titles; no return value.
        Side Effects / State: Stores an immutable tuple and a lookup dict.
        Dependencies: None.
        Failure Modes: None; duplicate titles keep their first spelling in the lookup.
        If Removed: Generation cannot verify that emitted titles exist in the catalog.
        Testing Notes: Build from a small list and check canonical() lookups.
        """
        # Keep catalog order for stable ranking ties.
        self._titles: Tuple[str, ...] = tuple(titles)
        self._lookup: Dict[str, str] = {}
        for title in self._titles:
            self._lookup.setdefault(title.lower(), title)

    @classmethod
    def from_file(cls, path: Path) -> "TitleCatalog":
        catalog = cls(load_titles(path))
        logger.info("Loaded %d job titles from %s", len(catalog), path)
        return catalog

    @property
    def titles(self) -> Tuple[str, ...]:
        return self._titles

    def canonical(self, title: str) -> Optional[str]:
        """Return the exact catalog spelling for a title, or None when it is not listed."""
        if not title:
            return None
        return self._lookup.get(title.strip().lower())

    def __contains__(self, title: object) -> bool:
        return isinstance(title, str) and self.canonical(title) == title

    def __len__(self) -> int:
        return len(self._titles)

    def __iter__(self) -> Iterator[str]:
        return iter(self._titles)
