"""Tests for the fusion engine.

Covers each candidate generator (cross-layer, temporal, causal, analogical,
conceptual), scoring and the strict threshold, the per-pass cap, novelty
penalties for repeated fusions, materialisation into the store, uncommitted
passes and their later commit, per-candidate failure handling and empty input.
"""

from __future__ import annotations

import logging

import pytest

from mindloop.fusion import FusionCandidate, FusionEngine
from mindloop.nodes import EpisodicNode, SemanticNode, TemporalContext, VeridicalNode
from mindloop.reasoning import ReasoningStep, ReasoningTrajectory
from mindloop.storage import MemoryStore

_MORNING = TemporalContext("morning", "monday", "spring", "recently")
_NIGHT = TemporalContext("night", "saturday", "winter", "long_ago")


def _trajectory() -> ReasoningTrajectory:
    return ReasoningTrajectory(
        steps=(ReasoningStep("Analyzing query: q", "initial", 0.9),),
        likelihood=0.9,
        original_policy=True,
    )


def _kinds(candidates: list[FusionCandidate]) -> list[str]:
    return [c.fusion_type for c in candidates]


# -----------------------------------------------------------------------
# 1. Candidate generators
# -----------------------------------------------------------------------


class TestCandidateGenerators:
    async def test_cross_layer_pair(self, store: MemoryStore) -> None:
        fact = store.add_node(VeridicalNode(content="budget meeting friday", importance=0.8))
        concept = store.add_node(SemanticNode(content="budget meeting friday", importance=0.8))
        engine = FusionEngine(store)
        candidates = await engine.identify_candidates([fact, concept])
        assert _kinds(candidates) == ["cross-layer"]
        assert candidates[0].content_similarity == pytest.approx(1.0)
        assert candidates[0].novelty == 1.0

    async def test_cross_layer_needs_similarity(self, store: MemoryStore) -> None:
        fact = store.add_node(VeridicalNode(content="alpha beta", importance=1.0))
        concept = store.add_node(SemanticNode(content="gamma delta", importance=0.0))
        candidates = await FusionEngine(store).identify_candidates([fact, concept])
        assert "cross-layer" not in _kinds(candidates)

    async def test_identical_temporal_context_yields_temporal_candidate(
        self, store: MemoryStore,
    ) -> None:
        a = EpisodicNode(content="I met Sarah about budget", temporal_context=_MORNING)
        b = EpisodicNode(content="Sarah discussed marketing budget with me", temporal_context=_MORNING)
        candidates = await FusionEngine(store).identify_candidates([a, b])
        assert "temporal" in _kinds(candidates)

    async def test_different_temporal_context_no_temporal_candidate(
        self, store: MemoryStore,
    ) -> None:
        a = EpisodicNode(content="walked the dog", temporal_context=_MORNING)
        b = EpisodicNode(content="read a book", temporal_context=_NIGHT)
        candidates = await FusionEngine(store).identify_candidates([a, b])
        assert "temporal" not in _kinds(candidates)

    async def test_causal_connectives(self, store: MemoryStore) -> None:
        a = VeridicalNode(content="Prices rose because supply fell", importance=0.4)
        b = VeridicalNode(content="Therefore demand dropped since cost leads to losses", importance=0.9)
        candidates = await FusionEngine(store).identify_candidates([a, b])
        causal = [c for c in candidates if c.fusion_type == "causal"]
        assert len(causal) == 1
        assert causal[0].content_similarity == pytest.approx(0.8)
        assert causal[0].importance == 0.9

    async def test_analogical_inside_band(self, store: MemoryStore) -> None:
        a = SemanticNode(content="budget planning process", concept_type="process")
        b = SemanticNode(content="budget review process", concept_type="process")
        candidates = await FusionEngine(store).identify_candidates([a, b])
        analogical = [c for c in candidates if c.fusion_type == "analogical"]
        assert len(analogical) == 1
        assert analogical[0].content_similarity == 0.6

    async def test_analogical_excludes_near_identical(self, store: MemoryStore) -> None:
        a = SemanticNode(content="budget planning process", concept_type="process")
        b = SemanticNode(content="budget planning process", concept_type="process")
        candidates = await FusionEngine(store).identify_candidates([a, b])
        assert "analogical" not in _kinds(candidates)

    async def test_analogical_excludes_unrelated(self, store: MemoryStore) -> None:
        a = SemanticNode(content="budget planning process", concept_type="process")
        b = SemanticNode(content="garden watering schedule", concept_type="process")
        candidates = await FusionEngine(store).identify_candidates([a, b])
        assert "analogical" not in _kinds(candidates)

    async def test_analogical_requires_same_concept_type(self, store: MemoryStore) -> None:
        a = SemanticNode(content="budget planning process", concept_type="process")
        b = SemanticNode(content="budget review process", concept_type="rule")
        candidates = await FusionEngine(store).identify_candidates([a, b])
        assert "analogical" not in _kinds(candidates)

    async def test_conceptual_from_shared_connections(self, store: MemoryStore) -> None:
        a = SemanticNode(content="team offsite plan agenda")
        b = SemanticNode(content="team offsite plan budget")
        for hub in ("h1", "h2", "h3", "h4", "h5"):
            a.connections.add(hub)
            b.connections.add(hub)
        candidates = await FusionEngine(store).identify_candidates([a, b])
        conceptual = [c for c in candidates if c.fusion_type == "conceptual"]
        assert len(conceptual) == 1
        assert conceptual[0].content_similarity == pytest.approx((0.5 + 0.6) / 2)

    async def test_fewer_than_two_nodes(self, store: MemoryStore) -> None:
        engine = FusionEngine(store)
        assert await engine.identify_candidates([]) == []
        node = SemanticNode(content="x")
        assert await engine.identify_candidates([node, node]) == []

    async def test_generator_order_is_fixed(self, store: MemoryStore) -> None:
        a = SemanticNode(content="because therefore since due to budget process", concept_type="process")
        b = EpisodicNode(content="because therefore since due to budget review", temporal_context=_MORNING)
        c = EpisodicNode(content="budget review", temporal_context=_MORNING)
        kinds = _kinds(await FusionEngine(store).identify_candidates([a, b, c]))
        order = ["cross-layer", "temporal", "causal", "analogical", "conceptual"]
        positions = [order.index(kind) for kind in kinds]
        assert positions == sorted(positions)


# -----------------------------------------------------------------------
# 2. Scoring and selection
# -----------------------------------------------------------------------


class TestScoringAndSelection:
    def test_score_formula(self, store: MemoryStore) -> None:
        a = VeridicalNode(content="x", importance=0.8)
        b = SemanticNode(content="x", importance=0.8)
        candidate = FusionCandidate(
            source_nodes=(a, b),
            fusion_type="cross-layer",
            content_similarity=1.0,
            importance=0.8,
            novelty=1.0,
        )
        [scored] = FusionEngine(store).score_candidates([candidate])
        assert scored.coherence == pytest.approx((1.0 + 0.8 + 0.0) / 3)
        assert scored.novelty_score == 1.0
        assert scored.fusion_score == pytest.approx(0.6 * 0.4 + 1.0 * 0.3 + 0.8 * 0.3)

    def test_threshold_is_strict(self, store: MemoryStore) -> None:
        a, b = SemanticNode(content="a"), SemanticNode(content="b")

        def make(score: float) -> FusionCandidate:
            return FusionCandidate((a, b), "conceptual", 0.5, 0.5, 0.6, fusion_score=score)

        engine = FusionEngine(store, fusion_threshold=0.6)
        selected = engine.select_candidates([make(0.6), make(0.61), make(0.9)])
        assert [c.fusion_score for c in selected] == [0.9, 0.61]

    def test_cap(self, store: MemoryStore) -> None:
        a, b = SemanticNode(content="a"), SemanticNode(content="b")
        candidates = [
            FusionCandidate((a, b), "conceptual", 0.5, 0.5, 0.6, fusion_score=0.7 + i / 100)
            for i in range(5)
        ]
        selected = FusionEngine(store, max_fusions_per_operation=2).select_candidates(candidates)
        assert [c.fusion_score for c in selected] == [pytest.approx(0.74), pytest.approx(0.73)]


# -----------------------------------------------------------------------
# 3. Full pass
# -----------------------------------------------------------------------


class TestFusionPass:
    async def test_empty_input_gives_empty_result(self, store: MemoryStore) -> None:
        result = await FusionEngine(store).identify_and_create_fusions([], _trajectory())
        assert result.new_connections == []
        assert result.quality_score == 0.0
        assert result.fusion_count == 0
        assert store.fusion_nodes() == ()

    async def test_creates_cross_layer_fusion(self, store: MemoryStore) -> None:
        fact = store.add_node(VeridicalNode(content="budget meeting friday", importance=0.8))
        concept = store.add_node(SemanticNode(content="budget meeting friday", importance=0.8))

        result = await FusionEngine(store).identify_and_create_fusions([fact, concept], _trajectory())

        assert result.fusion_count == 1
        assert result.quality_score == pytest.approx(0.78)
        fusion = store.find_fusion_node(result.new_connections[0])
        assert fusion is not None
        assert fusion.content == (
            "Cross-layer integration: budget meeting friday ↔ budget meeting friday"
        )
        assert fusion.fused_layers == frozenset({"veridical", "semantic"})
        assert fusion.source_nodes == (fact.id, concept.id)
        assert fusion.validation_status == "pending"
        assert fusion.coherence_score == pytest.approx(0.6)
        assert fusion.importance == pytest.approx(0.8)
        assert fusion.id in fact.connections
        assert fusion.id in concept.connections
        assert {fact.id, concept.id} <= fusion.connections

    async def test_uncommitted_pass_leaves_store_untouched(self, store: MemoryStore) -> None:
        fact = store.add_node(VeridicalNode(content="budget meeting friday", importance=0.8))
        concept = store.add_node(SemanticNode(content="budget meeting friday", importance=0.8))

        pending = await FusionEngine(store).identify_and_create_fusions(
            [fact, concept], _trajectory(), commit=False,
        )

        assert pending.committed is False
        assert pending.fusion_count == 1
        assert pending.quality_score == pytest.approx(0.78)
        assert [node.id for node in pending.fusion_nodes] == pending.new_connections
        assert store.fusion_nodes() == ()
        assert fact.connections == set()
        assert concept.connections == set()

    async def test_commit_stores_pending_nodes(self, store: MemoryStore) -> None:
        fact = store.add_node(VeridicalNode(content="budget meeting friday", importance=0.8))
        concept = store.add_node(SemanticNode(content="budget meeting friday", importance=0.8))
        engine = FusionEngine(store)

        pending = await engine.identify_and_create_fusions(
            [fact, concept], _trajectory(), commit=False,
        )
        committed = engine.commit(pending)

        assert committed.committed is True
        assert committed.new_connections == pending.new_connections
        assert committed.quality_score == pytest.approx(pending.quality_score)
        assert [f.id for f in store.fusion_nodes()] == pending.new_connections
        assert pending.new_connections[0] in fact.connections
        assert engine.commit(committed) is committed
        assert len(store.fusion_nodes()) == 1

    async def test_commit_skips_nodes_with_unknown_sources(
        self, store: MemoryStore, caplog: pytest.LogCaptureFixture,
    ) -> None:
        fact = VeridicalNode(content="budget meeting friday", importance=0.8)
        concept = SemanticNode(content="budget meeting friday", importance=0.8)
        engine = FusionEngine(store)

        pending = await engine.identify_and_create_fusions(
            [fact, concept], _trajectory(), commit=False,
        )
        with caplog.at_level(logging.WARNING, logger="mindloop.fusion"):
            committed = engine.commit(pending)

        assert pending.fusion_count == 1
        assert committed.fusion_count == 0
        assert committed.quality_score == 0.0
        assert "Failed to store cross-layer fusion node" in caplog.text

    async def test_repeat_fusion_is_less_novel(self, store: MemoryStore) -> None:
        fact = store.add_node(VeridicalNode(content="budget meeting friday", importance=0.8))
        concept = store.add_node(SemanticNode(content="budget meeting friday", importance=0.8))
        engine = FusionEngine(store)

        first = await engine.identify_and_create_fusions([fact, concept], _trajectory())
        second = await engine.identify_and_create_fusions([fact, concept], _trajectory())

        f1 = store.find_fusion_node(first.new_connections[0])
        f2 = store.find_fusion_node(second.new_connections[0])
        assert f1 is not None and f2 is not None
        assert f2.fusion_type == "cross-layer"
        assert f2.novelty_score == pytest.approx(f1.novelty_score - 0.1)

    async def test_below_threshold_not_materialized(self, sarah_store: MemoryStore) -> None:
        episodes = list(sarah_store.nodes("episodic"))
        result = await FusionEngine(sarah_store).identify_and_create_fusions(episodes, _trajectory())
        assert result.fusion_count == 0
        assert sarah_store.fusion_nodes() == ()

    async def test_lower_threshold_materializes_temporal(self, sarah_store: MemoryStore) -> None:
        episodes = list(sarah_store.nodes("episodic"))
        engine = FusionEngine(sarah_store, fusion_threshold=0.5)
        result = await engine.identify_and_create_fusions(episodes, _trajectory())
        assert result.fusion_count == 1
        [fusion] = sarah_store.fusion_nodes()
        assert fusion.fusion_type == "temporal"
        assert fusion.content.startswith("Temporal relationship: ")
        assert fusion.fused_layers == frozenset({"episodic"})

    async def test_every_created_fusion_beats_threshold(self, sarah_store: MemoryStore) -> None:
        nodes = list(sarah_store)
        engine = FusionEngine(sarah_store)
        result = await engine.identify_and_create_fusions(nodes, _trajectory())
        assert result.fusion_count == len(result.new_connections)
        if result.fusion_count:
            assert result.quality_score > engine.fusion_threshold

    async def test_unknown_sources_are_logged_and_skipped(
        self, store: MemoryStore, caplog: pytest.LogCaptureFixture,
    ) -> None:
        # Nodes never added to the store, so append_fusion_node raises KeyError.
        fact = VeridicalNode(content="budget meeting friday", importance=0.8)
        concept = SemanticNode(content="budget meeting friday", importance=0.8)
        with caplog.at_level(logging.WARNING, logger="mindloop.fusion"):
            result = await FusionEngine(store).identify_and_create_fusions(
                [fact, concept], _trajectory(),
            )
        assert result.fusion_count == 0
        assert result.new_connections == []
        assert "Failed to create cross-layer fusion node" in caplog.text

    def test_result_to_dict(self) -> None:
        from mindloop.fusion import FusionResult

        d = FusionResult(new_connections=["a"], quality_score=0.7, fusion_count=1).to_dict()
        assert d["new_connections"] == ["a"]
        assert d["fusion_count"] == 1
        assert d["committed"] is True
