"""Retrieval contract and a lexical reference implementation.

The control loop depends only on :class:`RetrievalService`: an awaitable
``retrieve(query, strategy)`` returning a :class:`RetrievalResult`.
Timeouts and cancellation are the caller's concern; a cancelled retrieval
simply raises :class:`asyncio.CancelledError` out of the loop.

:class:`KeywordRetrieval` is a small store-scanning service useful for tests
and for running the loop without an embedding backend.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from mindloop.nodes import MemoryNode, layer_of
from mindloop.reasoning import RetrievalStrategy
from mindloop.similarity import content_similarity
from mindloop.storage import MemoryStore

log = logging.getLogger(__name__)

_PRIMARY_LAYER_WEIGHT: float = 1.0
_SECONDARY_LAYER_WEIGHT: float = 0.8
_SIMILARITY_BLEND: float = 0.8
"""Share of relevance taken from query similarity; the rest is importance."""


@dataclass
class RetrievalResult:
    """Container for the output of a retrieval pass.

    Attributes
    ----------
    retrieved_nodes:
        Nodes ordered by descending relevance.
    retrieval_context:
        Short human-readable summary of what was retrieved.
    total_relevance_score:
        Sum of the per-node relevance scores.
    layer_distribution:
        Number of retrieved nodes per layer.
    """

    retrieved_nodes: list[MemoryNode] = field(default_factory=list)
    retrieval_context: str = ""
    total_relevance_score: float = 0.0
    layer_distribution: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_nodes(
        cls,
        nodes: list[MemoryNode],
        total_relevance_score: float,
        retrieval_context: str = "",
    ) -> RetrievalResult:
        """Build a result, deriving the layer distribution from *nodes*."""
        return cls(
            retrieved_nodes=list(nodes),
            retrieval_context=retrieval_context,
            total_relevance_score=total_relevance_score,
            layer_distribution=dict(Counter(layer_of(node) for node in nodes)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "retrieved_nodes": [node.id for node in self.retrieved_nodes],
            "retrieval_context": self.retrieval_context,
            "total_relevance_score": self.total_relevance_score,
            "layer_distribution": dict(self.layer_distribution),
        }


@runtime_checkable
class RetrievalService(Protocol):
    """Anything that can fetch ranked memory nodes for a query."""

    async def retrieve(self, query: str, strategy: RetrievalStrategy) -> RetrievalResult: ...


class KeywordRetrieval:
    """Scan the strategy's layers and rank nodes by word overlap with the query.

    Parameters
    ----------
    store:
        The shared memory store to scan.
    max_nodes:
        Maximum number of nodes returned.
    relevance_threshold:
        Nodes scoring below this are dropped.
    """

    def __init__(
        self,
        store: MemoryStore,
        max_nodes: int = 20,
        relevance_threshold: float = 0.1,
    ) -> None:
        self._store = store
        self._max_nodes = max_nodes
        self._relevance_threshold = relevance_threshold

    async def retrieve(self, query: str, strategy: RetrievalStrategy) -> RetrievalResult:
        scored: list[tuple[float, MemoryNode]] = []
        for layer in strategy.layers:
            weight = (
                _PRIMARY_LAYER_WEIGHT if layer == strategy.primary_layer
                else _SECONDARY_LAYER_WEIGHT
            )
            for node in self._store.nodes(layer):
                similarity = content_similarity(query, node.content) * weight
                relevance = similarity * _SIMILARITY_BLEND + node.importance * (1 - _SIMILARITY_BLEND)
                if similarity > 0.0 and relevance >= self._relevance_threshold:
                    scored.append((relevance, node))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        selected = scored[: self._max_nodes]
        for _, node in selected:
            self._store.record_access(node)

        nodes = [node for _, node in selected]
        total = sum(relevance for relevance, _ in selected)
        summary = "; ".join(node.content[:80] for node in nodes[:3])
        result = RetrievalResult.from_nodes(
            nodes,
            total_relevance_score=total,
            retrieval_context=f"Retrieved {len(nodes)} memories: {summary}" if nodes else "",
        )
        log.debug(
            "Keyword retrieval for %.50s: %d nodes, total relevance %.3f",
            query, len(nodes), total,
        )
        return result
