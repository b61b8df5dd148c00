"""Knowledge consolidation: the final stage of the control loop.

When :meth:`ConsolidationEngine.consolidate_knowledge` is called it merges
the reasoning, retrieval and fusion outputs of one query:

1. **Analyse** -- classify the retrieved nodes by layer and kind, collect
   their contents and average importance, strength and confidence.
2. **Integrate** -- build the answer text: reasoning first, then a bounded
   number of facts, concepts, experiences and cross-layer insights, then a
   memory-confidence line.  Empty sections are left out.
3. **Analyse fusions** -- split this pass's fusion nodes into strong and
   weak by coherence and flag the cross-layer ones.
4. **Generate insights** -- short observations emitted only when specific
   thresholds are crossed, capped at ``max_insights``.
5. **Aggregate confidence** -- weighted blend of the reasoning, retrieval
   and fusion quality plus small insight and layer-diversity bonuses.
6. **Strengthen** -- connect similar retrieved nodes both ways and bump the
   consolidation score of every source node behind a new fusion.

Nothing here raises on empty input: no retrieved nodes and no fusions is a
normal state and yields a low, finite confidence.

Usage::

    from mindloop.consolidation import ConsolidationEngine

    engine = ConsolidationEngine(store)
    result = await engine.consolidate_knowledge(reasoning, retrieval, fusion_result)
    print(result.to_dict())
"""

from __future__ import annotations

import itertools
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from mindloop.config import get_config
from mindloop.fusion import FusionResult
from mindloop.nodes import (
    EpisodicNode,
    FusionNode,
    MemoryNode,
    SemanticNode,
    VeridicalNode,
    layer_of,
)
from mindloop.reasoning import ReasoningResult
from mindloop.retrieval import RetrievalResult
from mindloop.similarity import content_similarity
from mindloop.storage import MemoryStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Confidence weights
# ---------------------------------------------------------------------------

_REASONING_WEIGHT: float = 0.3
_RETRIEVAL_WEIGHT: float = 0.4
_FUSION_WEIGHT: float = 0.2
_INSIGHT_BONUS_PER: float = 0.02
_INSIGHT_BONUS_CAP: float = 0.1
_LAYER_BONUS_PER: float = 0.025
_LAYER_BONUS_CAP: float = 0.1

_DEFAULT_NODE_CONFIDENCE: float = 0.7
"""Confidence proxy for episodic and fusion nodes."""

_UNVERIFIED_FACT_CONFIDENCE: float = 0.5


# ---------------------------------------------------------------------------
# Analysis records
# ---------------------------------------------------------------------------


@dataclass
class MemoryAnalysis:
    """Per-kind breakdown of the retrieved nodes."""

    node_count: int = 0
    layer_distribution: dict[str, int] = field(default_factory=dict)
    average_confidence: float = 0.0
    average_importance: float = 0.0
    average_strength: float = 0.0
    facts: list[str] = field(default_factory=list)
    concepts: list[str] = field(default_factory=list)
    experiences: list[str] = field(default_factory=list)
    fusion_insights: list[str] = field(default_factory=list)


@dataclass
class ConnectionAnalysis:
    """Classification of the fusion nodes created in this pass."""

    total_connections: int = 0
    strong_connections: list[str] = field(default_factory=list)
    weak_connections: list[str] = field(default_factory=list)
    cross_layer_connections: list[str] = field(default_factory=list)
    average_quality: float = 0.0


# ---------------------------------------------------------------------------
# ConsolidationResult
# ---------------------------------------------------------------------------


@dataclass
class ConsolidationResult:
    """Outcome of consolidating one query.

    Attributes
    ----------
    consolidated_knowledge:
        The integrated answer text.
    fused_connections:
        Ids of the fusion nodes created by this pass.
    strengthened_connections:
        ``(id, id)`` pairs of retrieved nodes that were connected.
    consolidation_confidence:
        Aggregate confidence in ``[0, 1]``.
    new_insights:
        Insight strings in check order, capped at ``max_insights``.
    """

    consolidated_knowledge: str = ""
    fused_connections: list[str] = field(default_factory=list)
    strengthened_connections: list[tuple[str, str]] = field(default_factory=list)
    consolidation_confidence: float = 0.0
    new_insights: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialise the result to a plain dict with JSON-safe types."""
        return {
            "consolidated_knowledge": self.consolidated_knowledge,
            "fused_connections": list(self.fused_connections),
            "strengthened_connections": [list(pair) for pair in self.strengthened_connections],
            "consolidation_confidence": self.consolidation_confidence,
            "new_insights": list(self.new_insights),
        }


# ---------------------------------------------------------------------------
# ConsolidationEngine
# ---------------------------------------------------------------------------


class ConsolidationEngine:
    """Merges reasoning, retrieval and fusion into an answer and graph updates.

    Parameters
    ----------
    store:
        The shared :class:`~mindloop.storage.MemoryStore`.  Used to look up
        this pass's fusion nodes and to apply connection and score updates.
    max_insights:
        Cap on generated insights.
    insight_generation_enabled:
        When ``False`` no insights are produced (and no insight bonus is
        added to the confidence).
    """

    def __init__(
        self,
        store: MemoryStore,
        max_insights: int | None = None,
        insight_generation_enabled: bool | None = None,
    ) -> None:
        self._store = store
        self._cfg = get_config().consolidation
        self.max_insights = self._cfg.max_insights if max_insights is None else max_insights
        self.insight_generation_enabled = (
            self._cfg.insight_generation_enabled
            if insight_generation_enabled is None else insight_generation_enabled
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def consolidate_knowledge(
        self,
        reasoning: ReasoningResult,
        retrieval: RetrievalResult,
        fusion_result: FusionResult,
        *,
        commit: bool | None = None,
    ) -> ConsolidationResult:
        """Run the six consolidation steps for one query.

        Parameters
        ----------
        commit:
            When ``False`` step 6 only reports the pairs it would connect and
            leaves the store untouched.  Defaults to
            ``fusion_result.committed``, so consolidating an uncommitted
            fusion pass is itself a dry run.
        """
        start = time.monotonic()
        if commit is None:
            commit = fusion_result.committed

        analysis = self.analyze_memories(retrieval.retrieved_nodes)
        knowledge = self.integrate_knowledge(reasoning, analysis)
        connections = self.analyze_fusion_connections(fusion_result)
        insights = (
            self.generate_insights(analysis, connections)
            if self.insight_generation_enabled else []
        )
        confidence = self.aggregate_confidence(
            reasoning, retrieval, fusion_result.quality_score, len(insights),
        )
        strengthened = self.strengthen_connections(
            retrieval.retrieved_nodes, fusion_result, commit=commit,
        )

        result = ConsolidationResult(
            consolidated_knowledge=knowledge,
            fused_connections=list(fusion_result.new_connections),
            strengthened_connections=strengthened,
            consolidation_confidence=confidence,
            new_insights=insights,
        )
        logger.info(
            "Consolidation %s in %.3fs: nodes=%d fusions=%d strengthened=%d "
            "insights=%d confidence=%.3f",
            "complete" if commit else "evaluated", time.monotonic() - start,
            analysis.node_count, len(result.fused_connections),
            len(strengthened), len(insights), confidence,
        )
        return result

    # ------------------------------------------------------------------
    # Step 1: memory analysis
    # ------------------------------------------------------------------

    def analyze_memories(self, nodes: list[MemoryNode]) -> MemoryAnalysis:
        analysis = MemoryAnalysis(node_count=len(nodes))
        if not nodes:
            return analysis

        confidence_sum = 0.0
        for node in nodes:
            match node:
                case VeridicalNode():
                    analysis.facts.append(node.content)
                    confidence_sum += 1.0 if node.is_verified else _UNVERIFIED_FACT_CONFIDENCE
                case SemanticNode(confidence=confidence):
                    analysis.concepts.append(node.content)
                    confidence_sum += confidence
                case EpisodicNode():
                    analysis.experiences.append(node.content)
                    confidence_sum += _DEFAULT_NODE_CONFIDENCE
                case FusionNode():
                    analysis.fusion_insights.append(node.content)
                    confidence_sum += _DEFAULT_NODE_CONFIDENCE
                case _:
                    confidence_sum += _DEFAULT_NODE_CONFIDENCE

        count = len(nodes)
        analysis.layer_distribution = dict(Counter(layer_of(node) for node in nodes))
        analysis.average_confidence = confidence_sum / count
        analysis.average_importance = sum(node.importance for node in nodes) / count
        analysis.average_strength = sum(node.strength_score or 0.0 for node in nodes) / count
        logger.debug(
            "Memory analysis: %d nodes, layers=%s, avg confidence %.3f",
            count, analysis.layer_distribution, analysis.average_confidence,
        )
        return analysis

    # ------------------------------------------------------------------
    # Step 2: knowledge integration
    # ------------------------------------------------------------------

    def integrate_knowledge(self, reasoning: ReasoningResult, analysis: MemoryAnalysis) -> str:
        sections = [f"Reasoning: {reasoning.reasoning}"]
        for title, items, limit in (
            ("Supporting Facts", analysis.facts, self._cfg.max_facts),
            ("Related Concepts", analysis.concepts, self._cfg.max_concepts),
            ("Relevant Experiences", analysis.experiences, self._cfg.max_experiences),
            ("Cross-layer Insights", analysis.fusion_insights, self._cfg.max_fusion_insights),
        ):
            if items and limit > 0:
                sections.append(f"{title}: " + "; ".join(items[:limit]))
        sections.append(f"Memory Confidence: {analysis.average_confidence * 100:.1f}%")
        return "\n\n".join(sections)

    # ------------------------------------------------------------------
    # Step 3: fusion-connection analysis
    # ------------------------------------------------------------------

    def analyze_fusion_connections(self, fusion_result: FusionResult) -> ConnectionAnalysis:
        analysis = ConnectionAnalysis(
            total_connections=len(fusion_result.new_connections),
            average_quality=fusion_result.quality_score,
        )
        for fusion in self._fusion_nodes(fusion_result):
            fusion_id = fusion.id
            if fusion.coherence_score > self._cfg.strong_coherence:
                analysis.strong_connections.append(fusion_id)
            else:
                analysis.weak_connections.append(fusion_id)
            if len(fusion.fused_layers) > 1:
                analysis.cross_layer_connections.append(fusion_id)
        return analysis

    def _fusion_nodes(self, fusion_result: FusionResult) -> list[FusionNode]:
        """Resolve the result's fusion ids, preferring the nodes it carries."""
        carried = {node.id: node for node in fusion_result.fusion_nodes}
        nodes = []
        for fusion_id in fusion_result.new_connections:
            fusion = carried.get(fusion_id) or self._store.find_fusion_node(fusion_id)
            if fusion is not None:
                nodes.append(fusion)
        return nodes

    # ------------------------------------------------------------------
    # Step 4: insights
    # ------------------------------------------------------------------

    def generate_insights(
        self,
        analysis: MemoryAnalysis,
        connections: ConnectionAnalysis,
    ) -> list[str]:
        insights: list[str] = []
        if analysis.node_count == 0:
            return insights

        if len(analysis.layer_distribution) >= 3:
            insights.append(
                "Multi-layer pattern identified across veridical, semantic, and episodic memories"
            )

        if analysis.average_confidence > 0.8:
            insights.append("High confidence knowledge base supports strong conclusions")
        elif analysis.average_confidence < 0.5:
            insights.append("Low confidence memories suggest need for additional verification")

        if len(connections.cross_layer_connections) > 2:
            insights.append("Strong cross-layer connections indicate integrated understanding")

        facts = len(analysis.facts)
        concepts = len(analysis.concepts)
        if facts > concepts * 2:
            insights.append("Fact-heavy recall pattern suggests concrete thinking mode")
        elif concepts > facts * 2:
            insights.append("Concept-heavy recall pattern suggests abstract thinking mode")

        if analysis.experiences:
            insights.append("Personal experiences provide contextual grounding for abstract concepts")

        return insights[: max(0, self.max_insights)]

    # ------------------------------------------------------------------
    # Step 5: confidence
    # ------------------------------------------------------------------

    @staticmethod
    def aggregate_confidence(
        reasoning: ReasoningResult,
        retrieval: RetrievalResult,
        fusion_quality: float,
        insight_count: int,
    ) -> float:
        node_count = len(retrieval.retrieved_nodes)
        retrieval_confidence = (
            min(1.0, max(0.0, retrieval.total_relevance_score) / node_count)
            if node_count else 0.0
        )
        layer_count = sum(1 for count in retrieval.layer_distribution.values() if count > 0)

        confidence = (
            reasoning.confidence * _REASONING_WEIGHT
            + retrieval_confidence * _RETRIEVAL_WEIGHT
            + fusion_quality * _FUSION_WEIGHT
            + min(_INSIGHT_BONUS_CAP, insight_count * _INSIGHT_BONUS_PER)
            + min(_LAYER_BONUS_CAP, layer_count * _LAYER_BONUS_PER)
        )
        return max(0.0, min(1.0, confidence))

    # ------------------------------------------------------------------
    # Step 6: connection strengthening
    # ------------------------------------------------------------------

    def strengthen_connections(
        self,
        retrieved_nodes: list[MemoryNode],
        fusion_result: FusionResult,
        *,
        commit: bool = True,
    ) -> list[tuple[str, str]]:
        """Connect similar retrieved nodes and reinforce fusion sources.

        Returns the ``(id, id)`` pairs that were connected, or that would be
        connected when *commit* is ``False``.
        """
        unique = list({node.id: node for node in retrieved_nodes}.values())
        strengthened: list[tuple[str, str]] = []
        for a, b in itertools.combinations(unique, 2):
            if content_similarity(a.content, b.content) > self._cfg.strengthen_similarity:
                if commit:
                    self._store.connect(a, b)
                strengthened.append((a.id, b.id))
        if not commit:
            return strengthened

        bumped = 0
        for fusion in self._fusion_nodes(fusion_result):
            for source_id in fusion.source_nodes:
                if self._store.bump_consolidation_score(
                    source_id, self._cfg.consolidation_increment,
                ):
                    bumped += 1

        logger.debug(
            "Strengthened %d connections, bumped %d consolidation scores",
            len(strengthened), bumped,
        )
        return strengthened
