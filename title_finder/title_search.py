"""Lexical title search over the job-title catalog.

Scoring contract (per query term, lower-cased):
    +10 when the whole title equals the term.
    +3  when the title contains the term.
    +1  otherwise, for every title word that is a prefix of the term or starts with it.
Terms are split on whitespace/commas and terms of two characters or fewer are ignored.
"""

from __future__ import annotations

import re
from typing import List, Sequence, Tuple

MAX_CANDIDATES = 500
MIN_TERM_LENGTH = 3

EXACT_MATCH_POINTS = 10
SUBSTRING_POINTS = 3
PREFIX_POINTS = 1

TERM_SPLIT_RE = re.compile(r"[\s,]+")


def tokenize_query(query: str) -> List[str]:
    """Purpose: Split a free-text query into scoring terms.
    Inputs/Outputs: Input is a query string; output is a list of lower-cased terms.
    Side Effects / State: None; pure function.
    Dependencies: Uses TERM_SPLIT_RE and MIN_TERM_LENGTH.
    Failure Modes: Returns an empty list for empty or noise-only queries.
    If Removed: score_title has no terms to score and search returns nothing.
    Testing Notes: Ensure "in", "IT", and "of" are dropped and commas split terms.
    """
    # Lower-case, split on whitespace/commas, and drop short noise terms.
    if not query:
        return []
    return [term for term in TERM_SPLIT_RE.split(query.lower()) if len(term) >= MIN_TERM_LENGTH]


def score_title(title: str, terms: Sequence[str]) -> int:
    """Purpose: Score one catalog title against pre-tokenized query terms.
    Inputs/Outputs: Inputs are a title and terms; output is the total integer score.
    Side Effects / State: None; pure function.
    Dependencies: Uses the *_POINTS constants.
    Failure Modes: None; titles with no matching terms score 0.
    If Removed: search_titles cannot rank the catalog.
    Testing Notes: Compare exact, substring, and prefix matches for a single term.
    """
    # Exact beats substring beats per-word prefix; prefix hits add up per word.
    lower = title.lower()
    words = lower.split()
    score = 0
    for term in terms:
        if lower == term:
            score += EXACT_MATCH_POINTS
        elif term in lower:
            score += SUBSTRING_POINTS
        else:
            for word in words:
                if word.startswith(term) or term.startswith(word):
                    score += PREFIX_POINTS
    return score


def search_titles(query: str, titles: Sequence[str], limit: int = MAX_CANDIDATES) -> List[str]:
    """Purpose: Rank catalog titles by lexical relevance to a free-text query.
    Inputs/Outputs: Inputs are a query, catalog titles, and a limit; output is the
        ranked title list, highest score first.
    Side Effects / State: None; pure and deterministic for fixed input.
    Dependencies: Uses tokenize_query and score_title.
    Failure Modes: Returns an empty list when no term survives tokenization or no
        title scores above zero.
    If Removed: Candidate retrieval stops working and generation always finds no match.
    Testing Notes: Verify descending order, catalog-order tie breaks, and the limit.
    """
    # Score every title, keep positive scores, and rely on the stable sort for ties.
    terms = tokenize_query(query)
    if not terms:
        return []
    scored: List[Tuple[int, str]] = []
    for title in titles:
        score = score_title(title, terms)
        if score > 0:
            scored.append((score, title))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [title for _, title in scored[:limit]]


def retrieve_candidates(
    keywords: str,
    context_text: str,
    titles: Sequence[str],
    limit: int = MAX_CANDIDATES,
) -> List[str]:
    """Purpose: Turn expansion keywords plus raw context into a bounded candidate list.
    Inputs/Outputs: Inputs are keyword text, context text, and titles; output is the
        ranked candidate list (possibly empty).
    Side Effects / State: None.
    Dependencies: Uses search_titles.
    Failure Modes: An empty result is the "no match" outcome, not an error.
    If Removed: The generation step has no candidates to hand to the model.
    Testing Notes: Call twice with the same input and compare lists for equality.
    """
    # Keywords lead so that expansion terms and raw context are scored together.
    query = f"{keywords or ''} {context_text or ''}".strip()
    return search_titles(query, titles, limit=limit)
