"""Keyword extraction and per-keyword relevance scoring.

Each keyword gets a tiered score from where it appears in the candidate
document; the first matching rule wins:

===========================================  =====
title contains the keyword                   1.0
a skill tag equals the keyword               0.95
body mentions it 5 or more times             0.9
body mentions it 2 to 4 times                0.7
body mentions it once                        0.5
otherwise                                    0.0
===========================================  =====

All comparisons are case-insensitive and body occurrences are counted as
non-overlapping literal matches.
"""

import re
from typing import Dict, List, Optional

from candidate_search.vector_store.base import CandidateDocument

STOP_WORDS = frozenset({
    "and", "or", "the", "a", "an", "in", "on", "at", "to", "for", "of", "with",
})
MIN_KEYWORD_LENGTH = 3

TITLE_SCORE = 1.0
SKILL_SCORE = 0.95
BODY_HIGH_SCORE = 0.9
BODY_MEDIUM_SCORE = 0.7
BODY_LOW_SCORE = 0.5

_SEPARATORS = re.compile(r"[\s,]+")


def extract_keywords(query: str) -> List[str]:
    """Split a query into scoring keywords.

    Lower-cases, splits on whitespace and commas, drops stop-words and tokens
    shorter than three characters, and de-duplicates preserving order.
    """
    keywords: List[str] = []
    seen = set()
    for token in _SEPARATORS.split((query or "").lower()):
        if len(token) < MIN_KEYWORD_LENGTH or token in STOP_WORDS or token in seen:
            continue
        seen.add(token)
        keywords.append(token)
    return keywords


class KeywordScorer:
    """Scores keywords against one fetched candidate document."""

    def score_keyword(self, keyword: str, document: Optional[CandidateDocument]) -> float:
        if document is None:
            return 0.0

        needle = keyword.lower()
        if not needle:
            return 0.0

        if needle in (document.title or "").lower():
            return TITLE_SCORE

        if any(needle == (skill or "").strip().lower() for skill in document.skills):
            return SKILL_SCORE

        occurrences = (document.body_text or "").lower().count(needle)
        if occurrences >= 5:
            return BODY_HIGH_SCORE
        if occurrences >= 2:
            return BODY_MEDIUM_SCORE
        if occurrences == 1:
            return BODY_LOW_SCORE
        return 0.0

    def score(self, keywords: List[str], document: Optional[CandidateDocument]) -> Dict[str, float]:
        """Score every keyword against the same document."""
        return {keyword: self.score_keyword(keyword, document) for keyword in keywords}
