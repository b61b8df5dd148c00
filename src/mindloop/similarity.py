"""Lexical and temporal similarity measures shared by fusion and consolidation.

All measures return floats in ``[0, 1]``.  Content similarity is the Jaccard
index of the lower-cased, whitespace-tokenised word sets; no stemming or
punctuation stripping is applied.
"""

from __future__ import annotations

from mindloop.nodes import MemoryNode, TemporalContext

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CAUSAL_KEYWORDS: tuple[str, ...] = (
    "because",
    "therefore",
    "causes",
    "leads to",
    "results in",
    "due to",
    "since",
)
"""Connectives that mark a cause-effect statement."""

_CAUSAL_HIT_SCORE: float = 0.2

_TEMPORAL_WEIGHTS: dict[str, float] = {
    "time_of_day": 0.3,
    "day_of_week": 0.2,
    "season": 0.1,
    "relative_time": 0.4,
}
"""Per-field weights for :func:`temporal_similarity`; they sum to 1.0."""


def tokenize(text: str) -> set[str]:
    """Return the set of lower-cased whitespace-separated words in *text*."""
    return set(text.lower().split())


def content_similarity(a: str, b: str) -> float:
    """Jaccard index of the word sets of *a* and *b* (0.0 when both are empty)."""
    words_a = tokenize(a)
    words_b = tokenize(b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def node_similarity(a: MemoryNode, b: MemoryNode) -> float:
    """Average of content similarity and importance closeness."""
    importance_similarity = 1.0 - abs(a.importance - b.importance)
    return (content_similarity(a.content, b.content) + importance_similarity) / 2.0


def temporal_similarity(a: TemporalContext, b: TemporalContext) -> float:
    """Weighted match over the four temporal categories."""
    score = 0.0
    for name, weight in _TEMPORAL_WEIGHTS.items():
        if getattr(a, name) == getattr(b, name):
            score += weight
    return min(1.0, score)


def causal_score(a: str, b: str) -> float:
    """Score 0.2 per causal keyword found in either text, capped at 1.0."""
    texts = (a.lower(), b.lower())
    hits = sum(1 for keyword in CAUSAL_KEYWORDS if any(keyword in t for t in texts))
    return min(1.0, hits * _CAUSAL_HIT_SCORE)


def shared_connections(a: MemoryNode, b: MemoryNode) -> set[str]:
    """Ids connected to both *a* and *b*."""
    return a.connections & b.connections
