"""Scoring strategies that combine keyword coverage with semantic similarity.

A strategy receives the KeywordScoreSet of one candidate, its semantic score
and the number of query keywords, and returns a final score in ``[0, 1]``
together with a human readable explanation.

The set of strategies is closed; ``get_strategy`` resolves names and aliases
and falls back to the default for anything unknown.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, Mapping, Optional, Tuple

import structlog

logger = structlog.get_logger("search.scoring")

DEFAULT_STRATEGY = "all_or_nothing"


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def keyword_coverage(keyword_scores: Mapping[str, float], total_keywords: int) -> Tuple[int, int]:
    """Return ``(matched, total)`` where matched counts nonzero scores."""
    matched = sum(1 for score in keyword_scores.values() if score > 0)
    return matched, total_keywords


def _percent(value: float) -> int:
    return int(round(value * 100))


class ScoringStrategy(ABC):
    """Base class for scoring strategies."""

    name: str = ""

    def score(
        self,
        keyword_scores: Mapping[str, float],
        semantic_score: float,
        total_keywords: int
    ) -> Tuple[float, str]:
        """Convenience wrapper returning ``(final_score, explanation)``."""
        final_score = self.calculate_score(keyword_scores, semantic_score, total_keywords)
        return final_score, self.explain(keyword_scores, semantic_score, total_keywords, final_score)

    def calculate_score(
        self,
        keyword_scores: Mapping[str, float],
        semantic_score: float,
        total_keywords: int
    ) -> float:
        semantic = clamp(semantic_score)
        if total_keywords <= 0:
            return semantic
        return clamp(self._calculate(keyword_scores, semantic, total_keywords))

    def explain(
        self,
        keyword_scores: Mapping[str, float],
        semantic_score: float,
        total_keywords: int,
        final_score: float
    ) -> str:
        if total_keywords <= 0:
            return (
                f"No keywords extracted from the query. "
                f"Score: {_percent(final_score)}% based on semantic similarity only."
            )
        return self._explain(keyword_scores, clamp(semantic_score), total_keywords, final_score)

    @abstractmethod
    def _calculate(self, keyword_scores: Mapping[str, float], semantic: float, total_keywords: int) -> float:
        """Score with at least one keyword and a clamped semantic score."""

    @abstractmethod
    def _explain(
        self,
        keyword_scores: Mapping[str, float],
        semantic: float,
        total_keywords: int,
        final_score: float
    ) -> str:
        """Explain a score computed with at least one keyword."""


class AllOrNothingStrategy(ScoringStrategy):
    """Full keyword coverage scores 1.0; anything less falls back to semantic."""

    name = "all_or_nothing"

    def _calculate(self, keyword_scores, semantic, total_keywords):
        matched, total = keyword_coverage(keyword_scores, total_keywords)
        if matched == total:
            return 1.0
        return semantic

    def _explain(self, keyword_scores, semantic, total_keywords, final_score):
        matched, total = keyword_coverage(keyword_scores, total_keywords)
        if matched == total:
            return (
                f"Perfect match! All {total} keywords found in candidate profile "
                f"(100% coverage). Score: 100% (All-or-Nothing strategy)."
            )
        return (
            f"Partial match: {matched} of {total} keywords matched "
            f"({_percent(matched / total)}% coverage). "
            f"Score: {_percent(semantic)}% based on semantic similarity only "
            f"(All-or-Nothing strategy requires all keywords for 100%)."
        )


class TieredMultiKeywordStrategy(ScoringStrategy):
    """Tiered by coverage.

    - full coverage: ``max(0.85, avg_quality*0.7 + semantic*0.3)``
    - at least half: ``avg_quality*coverage*0.6 + semantic*0.4``
    - below half: ``semantic*0.8``

    ``avg_quality`` is the mean of the nonzero keyword scores.
    """

    name = "tiered_multi_keyword"

    @staticmethod
    def average_quality(keyword_scores: Mapping[str, float]) -> float:
        matched_scores = [score for score in keyword_scores.values() if score > 0]
        if not matched_scores:
            return 0.0
        return sum(matched_scores) / len(matched_scores)

    def _calculate(self, keyword_scores, semantic, total_keywords):
        matched, total = keyword_coverage(keyword_scores, total_keywords)
        avg_quality = self.average_quality(keyword_scores)

        if matched == total:
            return max(0.85, avg_quality * 0.7 + semantic * 0.3)
        if matched * 2 >= total:
            coverage = matched / total
            return avg_quality * coverage * 0.6 + semantic * 0.4
        return semantic * 0.8

    def _explain(self, keyword_scores, semantic, total_keywords, final_score):
        matched, total = keyword_coverage(keyword_scores, total_keywords)
        coverage_percent = _percent(matched / total)

        if matched == total:
            return (
                f"Excellent match! All {total} keywords found ({coverage_percent}% coverage). "
                f"Final score: {_percent(final_score)}% (Tiered scoring with full keyword coverage)."
            )
        if matched * 2 >= total:
            return (
                f"Good match: {matched} of {total} keywords matched ({coverage_percent}% coverage). "
                f"Final score: {_percent(final_score)}% combines keyword quality and semantic "
                f"similarity (Tiered scoring with partial coverage)."
            )
        return (
            f"Semantic match: {matched} of {total} keywords matched ({coverage_percent}% coverage). "
            f"Final score: {_percent(final_score)}% based primarily on semantic similarity "
            f"(Tiered scoring favors semantic analysis for low keyword coverage)."
        )


class WeightedHybridStrategy(ScoringStrategy):
    """Weighted mean of semantic score and mean keyword score.

    Uses the tenant's ``semantic_weight`` and ``keyword_weight``; the mean
    keyword score averages over every keyword, zeros included.
    """

    name = "weighted"

    def __init__(self, semantic_weight: float = 0.6, keyword_weight: float = 0.4):
        self.semantic_weight = semantic_weight
        self.keyword_weight = keyword_weight

    def _mean_keyword(self, keyword_scores, total_keywords) -> float:
        return sum(clamp(score) for score in keyword_scores.values()) / total_keywords

    def _calculate(self, keyword_scores, semantic, total_keywords):
        weight_sum = self.semantic_weight + self.keyword_weight
        if weight_sum <= 0:
            return semantic
        keyword_mean = self._mean_keyword(keyword_scores, total_keywords)
        return (self.semantic_weight * semantic + self.keyword_weight * keyword_mean) / weight_sum

    def _explain(self, keyword_scores, semantic, total_keywords, final_score):
        matched, total = keyword_coverage(keyword_scores, total_keywords)
        return (
            f"Weighted match: {matched} of {total} keywords matched "
            f"({_percent(matched / total)}% coverage). Final score: {_percent(final_score)}% "
            f"from {_percent(semantic)}% semantic similarity (weight {self.semantic_weight:g}) "
            f"and {_percent(self._mean_keyword(keyword_scores, total_keywords))}% keyword quality "
            f"(weight {self.keyword_weight:g})."
        )


_REGISTRY: Dict[str, Callable[..., ScoringStrategy]] = {
    "all_or_nothing": lambda config: AllOrNothingStrategy(),
    "allornothing": lambda config: AllOrNothingStrategy(),
    "option1": lambda config: AllOrNothingStrategy(),
    "tiered_multi_keyword": lambda config: TieredMultiKeywordStrategy(),
    "tieredmultikeyword": lambda config: TieredMultiKeywordStrategy(),
    "option4": lambda config: TieredMultiKeywordStrategy(),
    "weighted": lambda config: WeightedHybridStrategy(
        config.semantic_weight if config else 0.6,
        config.keyword_weight if config else 0.4
    ),
}


def is_known_strategy(name: Optional[str]) -> bool:
    return bool(name) and name.strip().lower() in _REGISTRY


def canonical_strategy_name(name: Optional[str]) -> str:
    """Map a name or alias to the canonical strategy name."""
    if not is_known_strategy(name):
        return DEFAULT_STRATEGY
    return _REGISTRY[name.strip().lower()](None).name


def get_strategy(name: Optional[str], config=None) -> ScoringStrategy:
    """Resolve a strategy by name or alias (case-insensitive).

    Unknown names log a warning and resolve to the default strategy.
    ``config`` is a ``ScoringConfig`` supplying weights where a strategy
    uses them.
    """
    key = (name or "").strip().lower()
    factory = _REGISTRY.get(key)
    if factory is None:
        logger.warning("Unknown scoring strategy; using default", strategy=name, default=DEFAULT_STRATEGY)
        factory = _REGISTRY[DEFAULT_STRATEGY]
    return factory(config)


def available_strategies() -> Tuple[str, ...]:
    return ("all_or_nothing", "tiered_multi_keyword", "weighted")
