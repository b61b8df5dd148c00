"""Fusion: proposing and creating cross-cutting nodes from retrieved memories.

When :meth:`FusionEngine.identify_and_create_fusions` is called it runs the
fusion pass over the nodes returned by retrieval:

1. **Candidate generation** -- five independent generators propose node
   pairs worth fusing:

   - *cross-layer*: the first few nodes of every pair of layer groups whose
     combined content/importance similarity is high enough.
   - *temporal*: episodic pairs whose temporal contexts largely match.
   - *causal*: pairs whose contents use enough causal connectives.
   - *analogical*: semantic pairs of the same concept type that are similar
     but not near-identical.
   - *conceptual*: pairs sharing connections and content.

   The generators are pure functions over a snapshot of the nodes and run
   concurrently in worker threads; the pass waits for all of them before
   scoring.
2. **Scoring** -- coherence, novelty (penalised by existing fusions that
   share a source) and importance are combined into ``fusion_score``.
3. **Selection** -- candidates above the threshold, best first, capped.
4. **Materialisation** -- one :class:`~mindloop.nodes.FusionNode` per
   selected candidate, appended to the store and connected both ways to its
   sources.  A failure on one candidate is logged and skipped.

A pass run with ``commit=False`` builds the fusion nodes without touching
the store.  The control loop uses this to compare alternative paths and
then persists only the winner with :meth:`FusionEngine.commit`.

Usage::

    from mindloop.fusion import FusionEngine

    engine = FusionEngine(store)
    result = await engine.identify_and_create_fusions(nodes, trajectory)
    print(result.fusion_count, result.quality_score)
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import anyio

from mindloop.config import get_config
from mindloop.nodes import (
    FUSION_TYPE_LABELS,
    EpisodicNode,
    FusionNode,
    MemoryNode,
    SemanticNode,
    layer_of,
)
from mindloop.reasoning import ReasoningTrajectory
from mindloop.similarity import (
    causal_score,
    content_similarity,
    node_similarity,
    shared_connections,
    temporal_similarity,
)
from mindloop.storage import MemoryStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_BASE_NOVELTY: dict[str, float] = {
    "cross-layer": 1.0,
    "temporal": 0.7,
    "causal": 0.8,
    "analogical": 0.9,
    "conceptual": 0.6,
}
"""Novelty assigned to a fresh candidate of each fusion type."""

_ANALOGY_SCORE: float = 0.6
_SHARED_CONNECTION_SCORE: float = 0.1
_CROSS_LAYER_COMPATIBILITY: float = 0.8
_SAME_LAYER_COMPATIBILITY: float = 0.5


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class FusionCandidate:
    """A scored, not-yet-persisted proposal to fuse two nodes.

    ``fusion_score``, ``coherence`` and ``novelty_score`` are zero until
    :meth:`FusionEngine.score_candidates` fills them in.
    """

    source_nodes: tuple[MemoryNode, MemoryNode]
    fusion_type: str
    content_similarity: float
    importance: float
    novelty: float
    fusion_score: float = 0.0
    coherence: float = 0.0
    novelty_score: float = 0.0

    @property
    def source_ids(self) -> tuple[str, ...]:
        return tuple(node.id for node in self.source_nodes)

    @property
    def layers(self) -> frozenset[str]:
        return frozenset(layer_of(node) for node in self.source_nodes)


@dataclass
class FusionResult:
    """Summary of one fusion pass.

    Attributes
    ----------
    new_connections:
        Ids of the fusion nodes created, in creation order.
    quality_score:
        Mean ``fusion_score`` of the created nodes (0.0 when none).
    fusion_count:
        Number of fusion nodes actually created.
    processing_time:
        Wall-clock seconds spent in the pass.
    fusion_nodes, fusion_scores:
        The created nodes and their scores, parallel to ``new_connections``.
    committed:
        ``False`` while the nodes exist only in this result and not in the
        store.
    """

    new_connections: list[str] = field(default_factory=list)
    quality_score: float = 0.0
    fusion_count: int = 0
    processing_time: float = 0.0
    fusion_nodes: list[FusionNode] = field(default_factory=list)
    fusion_scores: list[float] = field(default_factory=list)
    committed: bool = True

    @classmethod
    def from_fusions(
        cls,
        fusions: list[tuple[FusionNode, float]],
        processing_time: float,
        committed: bool = True,
    ) -> FusionResult:
        return cls(
            new_connections=[node.id for node, _ in fusions],
            quality_score=sum(score for _, score in fusions) / len(fusions) if fusions else 0.0,
            fusion_count=len(fusions),
            processing_time=processing_time,
            fusion_nodes=[node for node, _ in fusions],
            fusion_scores=[score for _, score in fusions],
            committed=committed,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "new_connections": list(self.new_connections),
            "quality_score": self.quality_score,
            "fusion_count": self.fusion_count,
            "processing_time": self.processing_time,
            "committed": self.committed,
        }


# ---------------------------------------------------------------------------
# Fusion engine
# ---------------------------------------------------------------------------


class FusionEngine:
    """Finds fusion opportunities among retrieved nodes and creates them.

    Parameters
    ----------
    store:
        The shared :class:`~mindloop.storage.MemoryStore`; fusion nodes are
        appended here.
    fusion_threshold:
        Candidates must score strictly above this to be created.
    max_fusions_per_operation:
        Cap on fusion nodes created per pass.
    novelty_weight, coherence_weight:
        Weights of the novelty and coherence terms in ``fusion_score``.
    """

    def __init__(
        self,
        store: MemoryStore,
        fusion_threshold: float | None = None,
        max_fusions_per_operation: int | None = None,
        novelty_weight: float | None = None,
        coherence_weight: float | None = None,
    ) -> None:
        self._store = store
        self._cfg = get_config().fusion
        self.fusion_threshold = (
            self._cfg.fusion_threshold if fusion_threshold is None else fusion_threshold
        )
        self.max_fusions_per_operation = (
            self._cfg.max_fusions_per_operation
            if max_fusions_per_operation is None else max_fusions_per_operation
        )
        self.novelty_weight = self._cfg.novelty_weight if novelty_weight is None else novelty_weight
        self.coherence_weight = (
            self._cfg.coherence_weight if coherence_weight is None else coherence_weight
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def identify_and_create_fusions(
        self,
        retrieved_nodes: list[MemoryNode],
        reasoning_trajectory: ReasoningTrajectory,
        *,
        commit: bool = True,
    ) -> FusionResult:
        """Run a full fusion pass over *retrieved_nodes*.

        Parameters
        ----------
        commit:
            When ``False`` the fusion nodes are built but not stored; pass
            the result to :meth:`commit` to persist them.

        Returns
        -------
        FusionResult
            Ids of the fusion nodes created and their mean score.  An empty
            input yields an empty result.
        """
        start = time.monotonic()
        logger.debug(
            "Identifying fusion opportunities among %d nodes (trajectory %s)",
            len(retrieved_nodes), reasoning_trajectory.id,
        )

        candidates = await self.identify_candidates(retrieved_nodes)
        scored = self.score_candidates(candidates)
        selected = self.select_candidates(scored)
        if commit:
            created = self.materialize(selected)
        else:
            created = [(self.build_fusion_node(c), c) for c in selected]

        result = FusionResult.from_fusions(
            [(node, candidate.fusion_score) for node, candidate in created],
            processing_time=time.monotonic() - start,
            committed=commit,
        )
        logger.info(
            "Fusion pass complete in %.3fs: candidates=%d selected=%d %s=%d quality=%.3f",
            result.processing_time, len(candidates), len(selected),
            "created" if commit else "pending", result.fusion_count, result.quality_score,
        )
        return result

    def commit(self, result: FusionResult) -> FusionResult:
        """Store the pending fusion nodes of an uncommitted pass.

        Nodes that cannot be stored are logged and dropped from the returned
        result.  An already committed result is returned unchanged.
        """
        if result.committed:
            return result
        start = time.monotonic()
        stored: list[tuple[FusionNode, float]] = []
        for fusion, score in zip(result.fusion_nodes, result.fusion_scores):
            try:
                self._store_fusion_node(fusion)
            except (KeyError, ValueError) as exc:
                logger.warning(
                    "Failed to store %s fusion node from %s: %s",
                    fusion.fusion_type, fusion.source_nodes, exc, exc_info=True,
                )
                continue
            stored.append((fusion, score))
        logger.debug("Committed %d of %d pending fusion nodes", len(stored), result.fusion_count)
        return FusionResult.from_fusions(
            stored, processing_time=result.processing_time + time.monotonic() - start,
        )

    async def identify_candidates(self, nodes: list[MemoryNode]) -> list[FusionCandidate]:
        """Run the five candidate generators concurrently and concatenate their output.

        The output order is fixed (cross-layer, temporal, causal, analogical,
        conceptual) regardless of which generator finishes first.
        """
        snapshot = list({node.id: node for node in nodes}.values())
        if len(snapshot) < 2:
            return []
        generators: list[Callable[[list[MemoryNode]], list[FusionCandidate]]] = [
            self._cross_layer_candidates,
            self._temporal_candidates,
            self._causal_candidates,
            self._analogical_candidates,
            self._conceptual_candidates,
        ]
        batches = await asyncio.gather(
            *(anyio.to_thread.run_sync(generator, snapshot) for generator in generators)
        )
        candidates = [candidate for batch in batches for candidate in batch]
        logger.debug(
            "Found %d fusion candidates (%s)",
            len(candidates), ", ".join(str(len(batch)) for batch in batches),
        )
        return candidates

    def score_candidates(self, candidates: Iterable[FusionCandidate]) -> list[FusionCandidate]:
        """Fill in coherence, novelty and ``fusion_score`` on each candidate."""
        scored = []
        for candidate in candidates:
            candidate.coherence = self._coherence(candidate)
            candidate.novelty_score = self._novelty(candidate)
            candidate.fusion_score = (
                candidate.coherence * self.coherence_weight
                + candidate.novelty_score * self.novelty_weight
                + candidate.importance * self._cfg.importance_weight
            )
            scored.append(candidate)
        return scored

    def select_candidates(self, candidates: Iterable[FusionCandidate]) -> list[FusionCandidate]:
        """Keep candidates above the threshold, best first, at most the cap."""
        passing = [c for c in candidates if c.fusion_score > self.fusion_threshold]
        passing.sort(key=lambda c: c.fusion_score, reverse=True)
        return passing[: max(0, self.max_fusions_per_operation)]

    def materialize(
        self,
        candidates: Iterable[FusionCandidate],
    ) -> list[tuple[FusionNode, FusionCandidate]]:
        """Create a fusion node for each candidate; failures are logged and skipped."""
        created: list[tuple[FusionNode, FusionCandidate]] = []
        for candidate in candidates:
            try:
                node = self._store_fusion_node(self.build_fusion_node(candidate))
            except (KeyError, ValueError) as exc:
                logger.warning(
                    "Failed to create %s fusion node from %s: %s",
                    candidate.fusion_type, candidate.source_ids, exc, exc_info=True,
                )
                continue
            created.append((node, candidate))
            logger.debug("Created fusion node %s with score %.3f", node.id, candidate.fusion_score)
        return created

    # ------------------------------------------------------------------
    # Candidate generators (run in worker threads)
    # ------------------------------------------------------------------

    def _cross_layer_candidates(self, nodes: list[MemoryNode]) -> list[FusionCandidate]:
        groups: dict[str, list[MemoryNode]] = {}
        for node in nodes:
            groups.setdefault(layer_of(node), []).append(node)

        limit = self._cfg.cross_layer_group_limit
        candidates = []
        for first_layer, second_layer in itertools.combinations(groups, 2):
            for a in groups[first_layer][:limit]:
                for b in groups[second_layer][:limit]:
                    similarity = node_similarity(a, b)
                    if similarity > self._cfg.cross_layer_similarity:
                        candidates.append(
                            FusionCandidate(
                                source_nodes=(a, b),
                                fusion_type="cross-layer",
                                content_similarity=similarity,
                                importance=(a.importance + b.importance) / 2.0,
                                novelty=_BASE_NOVELTY["cross-layer"],
                            )
                        )
        return candidates

    def _temporal_candidates(self, nodes: list[MemoryNode]) -> list[FusionCandidate]:
        episodes = [node for node in nodes if isinstance(node, EpisodicNode)]
        candidates = []
        for a, b in itertools.combinations(episodes, 2):
            if a.temporal_context is None or b.temporal_context is None:
                continue
            if temporal_similarity(a.temporal_context, b.temporal_context) > self._cfg.temporal_similarity:
                candidates.append(
                    FusionCandidate(
                        source_nodes=(a, b),
                        fusion_type="temporal",
                        content_similarity=node_similarity(a, b),
                        importance=(a.importance + b.importance) / 2.0,
                        novelty=_BASE_NOVELTY["temporal"],
                    )
                )
        return candidates

    def _causal_candidates(self, nodes: list[MemoryNode]) -> list[FusionCandidate]:
        candidates = []
        for a, b in itertools.combinations(nodes, 2):
            score = causal_score(a.content, b.content)
            if score > self._cfg.causal_threshold:
                candidates.append(
                    FusionCandidate(
                        source_nodes=(a, b),
                        fusion_type="causal",
                        content_similarity=score,
                        importance=max(a.importance, b.importance),
                        novelty=_BASE_NOVELTY["causal"],
                    )
                )
        return candidates

    def _analogical_candidates(self, nodes: list[MemoryNode]) -> list[FusionCandidate]:
        concepts = [node for node in nodes if isinstance(node, SemanticNode)]
        low, high = self._cfg.analogy_band
        candidates = []
        for a, b in itertools.combinations(concepts, 2):
            if a.concept_type != b.concept_type:
                continue
            if low < content_similarity(a.content, b.content) < high:
                candidates.append(
                    FusionCandidate(
                        source_nodes=(a, b),
                        fusion_type="analogical",
                        content_similarity=_ANALOGY_SCORE,
                        importance=(a.importance + b.importance) / 2.0,
                        novelty=_BASE_NOVELTY["analogical"],
                    )
                )
        return candidates

    def _conceptual_candidates(self, nodes: list[MemoryNode]) -> list[FusionCandidate]:
        candidates = []
        for a, b in itertools.combinations(nodes, 2):
            connection_score = len(shared_connections(a, b)) * _SHARED_CONNECTION_SCORE
            score = (connection_score + content_similarity(a.content, b.content)) / 2.0
            if score > self._cfg.conceptual_threshold:
                candidates.append(
                    FusionCandidate(
                        source_nodes=(a, b),
                        fusion_type="conceptual",
                        content_similarity=score,
                        importance=(a.importance + b.importance) / 2.0,
                        novelty=_BASE_NOVELTY["conceptual"],
                    )
                )
        return candidates

    # ------------------------------------------------------------------
    # Scoring helpers
    # ------------------------------------------------------------------

    def _coherence(self, candidate: FusionCandidate) -> float:
        layer_compatibility = (
            _CROSS_LAYER_COMPATIBILITY if len(candidate.layers) > 1 else _SAME_LAYER_COMPATIBILITY
        )
        return (
            candidate.content_similarity
            + layer_compatibility
            + self._connection_strength(candidate.source_nodes)
        ) / 3.0

    @staticmethod
    def _connection_strength(nodes: tuple[MemoryNode, ...]) -> float:
        total = 0
        shared = 0
        for a, b in itertools.combinations(nodes, 2):
            total += len(a.connections) + len(b.connections)
            shared += len(shared_connections(a, b))
        return shared / total if total else 0.0

    def _novelty(self, candidate: FusionCandidate) -> float:
        existing = len(self._store.fusions_sharing_sources(candidate.source_ids))
        penalty = min(self._cfg.max_novelty_penalty, existing * self._cfg.similar_fusion_penalty)
        return max(0.0, candidate.novelty - penalty)

    # ------------------------------------------------------------------
    # Materialisation
    # ------------------------------------------------------------------

    @staticmethod
    def build_fusion_node(candidate: FusionCandidate) -> FusionNode:
        """Build the fusion node for *candidate* without storing it."""
        label = FUSION_TYPE_LABELS[candidate.fusion_type]
        content = f"{label}: " + " ↔ ".join(node.content for node in candidate.source_nodes)
        return FusionNode(
            content=content,
            importance=candidate.importance,
            fused_layers=candidate.layers,
            source_nodes=candidate.source_ids,
            fusion_type=candidate.fusion_type,
            coherence_score=candidate.coherence,
            novelty_score=candidate.novelty_score,
            validation_status="pending",
        )

    def _store_fusion_node(self, fusion: FusionNode) -> FusionNode:
        self._store.append_fusion_node(fusion)
        for source_id in fusion.source_nodes:
            self._store.connect_ids(source_id, fusion.id)
        return fusion
