"""Tests for the node dataclasses in mindloop.nodes.

Covers construction-time validation, defaults derived from importance,
connection bookkeeping, access recording, verification and evidence
updates, fusion validation verdicts, temporal categorisation and
serialisation.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from mindloop.nodes import (
    FUSION_TYPES,
    LAYERS,
    EpisodicNode,
    FusionNode,
    SemanticNode,
    TemporalContext,
    VeridicalNode,
    layer_of,
    validate_layer,
)


# -----------------------------------------------------------------------
# 1. Base fields
# -----------------------------------------------------------------------


class TestBaseFields:
    """Defaults and invariants shared by every node kind."""

    def test_strength_defaults_to_importance(self) -> None:
        node = VeridicalNode(content="Rent is due on the 1st", importance=0.65)
        assert node.strength_score == 0.65
        assert node.consolidation_score == 0.0
        assert node.connections == set()

    def test_importance_is_clamped(self) -> None:
        assert VeridicalNode(content="x", importance=1.7).importance == 1.0
        assert VeridicalNode(content="x", importance=-0.2).importance == 0.0

    def test_ids_are_unique(self) -> None:
        a = SemanticNode(content="same text")
        b = SemanticNode(content="same text")
        assert a.id != b.id
        assert a != b

    def test_add_connection_ignores_self_and_duplicates(self) -> None:
        node = SemanticNode(content="concept")
        assert node.add_connection("other") is True
        assert node.add_connection("other") is False
        assert node.add_connection(node.id) is False
        assert node.connections == {"other"}

    def test_record_access_bumps_counters(self) -> None:
        node = EpisodicNode(content="walked the dog", importance=0.5)
        node.record_access()
        assert node.access_count == 1
        assert node.last_accessed is not None
        assert node.importance == pytest.approx(0.52)
        assert node.strength_score == pytest.approx(0.51)

    def test_record_access_caps_at_one(self) -> None:
        node = EpisodicNode(content="walked the dog", importance=1.0)
        node.record_access()
        assert node.importance == 1.0
        assert node.strength_score == 1.0


# -----------------------------------------------------------------------
# 2. Kind-specific payloads
# -----------------------------------------------------------------------


class TestVeridicalNode:
    def test_invalid_fact_type_raises(self) -> None:
        with pytest.raises(ValueError, match="fact type"):
            VeridicalNode(content="x", fact_type="rumour")

    def test_verify_strengthens(self) -> None:
        node = VeridicalNode(content="x", importance=0.5)
        node.verify("verified")
        assert node.is_verified
        assert node.strength_score == pytest.approx(0.7)

    def test_verify_rejects_unknown_status(self) -> None:
        node = VeridicalNode(content="x")
        with pytest.raises(ValueError):
            node.verify("probably")


class TestSemanticNode:
    def test_confidence_defaults_to_importance(self) -> None:
        assert SemanticNode(content="x", importance=0.4).confidence == 0.4

    def test_explicit_confidence_kept(self) -> None:
        assert SemanticNode(content="x", importance=0.4, confidence=0.9).confidence == 0.9

    def test_evidence_and_contradictions_move_confidence(self) -> None:
        node = SemanticNode(content="x", importance=0.5)
        node.add_evidence("e1")
        node.add_evidence("e1")
        assert node.evidence_nodes == ["e1"]
        assert node.confidence == pytest.approx(0.6)
        node.add_contradiction("c1")
        assert node.confidence == pytest.approx(0.45)

    def test_invalid_concept_type_raises(self) -> None:
        with pytest.raises(ValueError, match="concept type"):
            SemanticNode(content="x", concept_type="vibe")


class TestEpisodicNode:
    def test_temporal_context_derived_from_timestamp(self) -> None:
        ts = datetime(2024, 7, 3, 10, tzinfo=timezone.utc)
        node = EpisodicNode(content="beach trip", timestamp=ts)
        assert node.temporal_context is not None
        assert node.temporal_context.time_of_day == "morning"
        assert node.temporal_context.day_of_week == "wednesday"
        assert node.temporal_context.season == "summer"

    def test_invalid_episode_type_raises(self) -> None:
        with pytest.raises(ValueError, match="episode type"):
            EpisodicNode(content="x", episode_type="daydream")


class TestFusionNode:
    def test_defaults(self) -> None:
        node = FusionNode(content="link", source_nodes=["a", "b"], fused_layers={"semantic"})
        assert node.importance == 0.8
        assert node.validation_status == "pending"
        assert node.source_nodes == ("a", "b")
        assert node.fused_layers == frozenset({"semantic"})

    @pytest.mark.parametrize("fusion_type", FUSION_TYPES)
    def test_every_fusion_type_accepted(self, fusion_type: str) -> None:
        assert FusionNode(content="x", fusion_type=fusion_type).fusion_type == fusion_type

    def test_invalid_fusion_type_raises(self) -> None:
        with pytest.raises(ValueError, match="fusion type"):
            FusionNode(content="x", fusion_type="telepathic")

    def test_invalid_fused_layer_raises(self) -> None:
        with pytest.raises(ValueError, match="layer"):
            FusionNode(content="x", fused_layers={"procedural"})

    def test_validate_adjusts_scores(self) -> None:
        node = FusionNode(content="x", coherence_score=0.5, importance=0.5)
        node.validate("validated")
        assert node.coherence_score == pytest.approx(0.7)
        assert node.strength_score == pytest.approx(0.8)
        node.validate("rejected")
        assert node.coherence_score == pytest.approx(0.4)
        assert node.strength_score == pytest.approx(0.6)
        node.validate("uncertain")
        assert node.coherence_score == pytest.approx(0.36)


# -----------------------------------------------------------------------
# 3. Temporal context and layer helpers
# -----------------------------------------------------------------------


class TestTemporalContext:
    @pytest.mark.parametrize(
        ("hour", "expected"),
        [(6, "early_morning"), (10, "morning"), (14, "afternoon"), (19, "evening"), (23, "night"), (2, "night")],
    )
    def test_time_of_day_buckets(self, hour: int, expected: str) -> None:
        ts = datetime(2024, 1, 15, hour, tzinfo=timezone.utc)
        assert TemporalContext.from_timestamp(ts, now=ts).time_of_day == expected

    @pytest.mark.parametrize(
        ("days", "expected"),
        [(0, "today"), (1, "yesterday"), (3, "this_week"), (10, "recently"), (45, "some_time_ago"), (200, "long_ago")],
    )
    def test_relative_time_buckets(self, days: int, expected: str) -> None:
        now = datetime(2024, 6, 1, 12, tzinfo=timezone.utc)
        ctx = TemporalContext.from_timestamp(now - timedelta(days=days, minutes=1), now=now)
        assert ctx.relative_time == expected

    def test_naive_timestamp_supported(self) -> None:
        ctx = TemporalContext.from_timestamp(datetime(2024, 12, 25, 9))
        assert ctx.season == "winter"


class TestLayerHelpers:
    def test_layer_of_each_kind(self) -> None:
        assert layer_of(VeridicalNode(content="x")) == "veridical"
        assert layer_of(SemanticNode(content="x")) == "semantic"
        assert layer_of(EpisodicNode(content="x")) == "episodic"
        assert layer_of(FusionNode(content="x")) == "fusion"

    def test_validate_layer(self) -> None:
        for layer in LAYERS:
            validate_layer(layer)
        with pytest.raises(ValueError):
            validate_layer("procedural")


class TestSerialisation:
    def test_to_dict_includes_kind_fields(self) -> None:
        node = SemanticNode(content="budgeting", concept_type="process", importance=0.6)
        node.add_connection("abc")
        d = node.to_dict()
        assert d["layer"] == "semantic"
        assert d["kind"] == "concept"
        assert d["connections"] == ["abc"]
        assert d["concept_type"] == "process"
        assert d["confidence"] == 0.6

    def test_fusion_to_dict_sorts_layers(self) -> None:
        node = FusionNode(content="x", fused_layers={"semantic", "episodic"}, source_nodes=("a", "b"))
        d = node.to_dict()
        assert d["fused_layers"] == ["episodic", "semantic"]
        assert d["source_nodes"] == ["a", "b"]
