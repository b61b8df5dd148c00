"""Memory node types for the layered cognitive memory.

A **node** is a single unit of memory living in one of four layers:

- **veridical** -- raw facts and observations.
- **semantic** -- consolidated concepts.
- **episodic** -- experiences anchored in time.
- **fusion** -- derived cross-links built from two or more other nodes.

Every node kind shares the base fields of :class:`MemoryNode` and adds its
own payload.  Callers dispatch on the concrete class with ``match``::

    match node:
        case SemanticNode(confidence=c):
            ...
        case FusionNode():
            ...

``connections`` hold node *ids*, never node objects.  A node never owns the
nodes it references; lookups go through
:class:`~mindloop.storage.MemoryStore`, which is also the only component
allowed to mutate a node once it is shared.

Usage::

    from mindloop.nodes import SemanticNode, VeridicalNode

    fact = VeridicalNode(content="The budget review is on Friday", fact_type="event")
    concept = SemanticNode(content="Quarterly budgeting", concept_type="process")
    print(fact.to_dict())
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

LAYERS: tuple[str, ...] = ("veridical", "semantic", "episodic", "fusion")
"""All memory layers, in pipeline display order."""

BASE_LAYERS: tuple[str, ...] = ("veridical", "semantic", "episodic")
"""Layers populated by upstream ingestion (everything except fusion)."""

NODE_KINDS: dict[str, str] = {
    "veridical": "fact",
    "semantic": "concept",
    "episodic": "episode",
    "fusion": "fusion",
}
"""Concrete node kind stored in each layer."""

FACT_TYPES: tuple[str, ...] = ("observation", "statement", "measurement", "event", "condition")

VERIFICATION_STATUSES: tuple[str, ...] = ("unverified", "verified", "conflicted", "deprecated")

CONCEPT_TYPES: tuple[str, ...] = (
    "entity",
    "relationship",
    "category",
    "attribute",
    "process",
    "rule",
    "principle",
)

EPISODE_TYPES: tuple[str, ...] = (
    "interaction",
    "event",
    "experience",
    "conversation",
    "observation",
    "decision",
)

FUSION_TYPES: tuple[str, ...] = (
    "cross-layer",
    "within-layer",
    "temporal",
    "causal",
    "analogical",
    "conceptual",
)
"""Allowed values for :attr:`FusionNode.fusion_type`."""

FUSION_TYPE_LABELS: dict[str, str] = {
    "cross-layer": "Cross-layer integration",
    "within-layer": "Within-layer connection",
    "temporal": "Temporal relationship",
    "causal": "Causal relationship",
    "analogical": "Analogical connection",
    "conceptual": "Conceptual integration",
}
"""Human-readable prefix used in the content of new fusion nodes."""

VALIDATION_STATUSES: tuple[str, ...] = ("pending", "validated", "rejected", "uncertain")


# ---------------------------------------------------------------------------
# Validation helpers (module-private)
# ---------------------------------------------------------------------------


def _validate_choice(name: str, value: str, allowed: tuple[str, ...]) -> None:
    """Raise :class:`ValueError` if *value* is not one of *allowed*."""
    if value not in allowed:
        raise ValueError(
            f"Invalid {name} {value!r}. Must be one of: {', '.join(allowed)}"
        )


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Temporal context
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TemporalContext:
    """Coarse time categories attached to an episodic memory.

    Two episodes are compared field by field (see
    :func:`~mindloop.similarity.temporal_similarity`), so the categories are
    deliberately coarse.
    """

    time_of_day: str
    day_of_week: str
    season: str | None
    relative_time: str

    @classmethod
    def from_timestamp(
        cls,
        timestamp: datetime,
        now: datetime | None = None,
    ) -> TemporalContext:
        """Derive the categories for *timestamp*, relative to *now*."""
        if now is None:
            now = _utcnow() if timestamp.tzinfo else datetime.now()
        hour = timestamp.hour
        if 5 <= hour < 9:
            time_of_day = "early_morning"
        elif 9 <= hour < 12:
            time_of_day = "morning"
        elif 12 <= hour < 17:
            time_of_day = "afternoon"
        elif 17 <= hour < 21:
            time_of_day = "evening"
        else:
            time_of_day = "night"

        month = timestamp.month
        if month in (12, 1, 2):
            season = "winter"
        elif month in (3, 4, 5):
            season = "spring"
        elif month in (6, 7, 8):
            season = "summer"
        else:
            season = "fall"

        days_since = (now - timestamp).total_seconds() / 86_400
        if days_since < 1:
            relative_time = "today"
        elif days_since < 2:
            relative_time = "yesterday"
        elif days_since < 7:
            relative_time = "this_week"
        elif days_since < 30:
            relative_time = "recently"
        elif days_since < 90:
            relative_time = "some_time_ago"
        else:
            relative_time = "long_ago"

        return cls(
            time_of_day=time_of_day,
            day_of_week=timestamp.strftime("%A").lower(),
            season=season,
            relative_time=relative_time,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "time_of_day": self.time_of_day,
            "day_of_week": self.day_of_week,
            "season": self.season,
            "relative_time": self.relative_time,
        }


# ---------------------------------------------------------------------------
# Node dataclasses
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class MemoryNode:
    """Fields shared by every node kind.

    Nodes compare and hash by identity; two nodes with the same content are
    still distinct memories.

    Parameters
    ----------
    content:
        The text payload.
    importance:
        Priority weight in ``[0, 1]``.
    id:
        Stable identifier (a UUID string unless supplied).
    connections:
        Ids of related nodes.  Undirected, weak references.
    consolidation_score:
        Monotonically non-decreasing score in ``[0, 1]`` bumped by
        consolidation events.
    strength_score:
        How well-established the node is.  Starts at ``importance``.
    """

    layer: ClassVar[str] = ""
    kind: ClassVar[str] = ""

    content: str
    importance: float = 0.5
    id: str = field(default_factory=_new_id)
    connections: set[str] = field(default_factory=set)
    consolidation_score: float = 0.0
    strength_score: float | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    access_count: int = 0
    last_accessed: datetime | None = None

    def __post_init__(self) -> None:
        self.importance = _clamp(self.importance)
        if self.strength_score is None:
            self.strength_score = self.importance

    # ------------------------------------------------------------------
    # Mutation (callers holding a shared node go through MemoryStore)
    # ------------------------------------------------------------------

    def add_connection(self, node_id: str) -> bool:
        """Add *node_id* to :attr:`connections`; return ``True`` if it was new."""
        if node_id == self.id or node_id in self.connections:
            return False
        self.connections.add(node_id)
        return True

    def record_access(self) -> None:
        """Register a retrieval: bump access count, importance and strength."""
        self.access_count += 1
        self.last_accessed = _utcnow()
        self.importance = min(1.0, self.importance + 0.02)
        self.strength_score = min(1.0, (self.strength_score or 0.0) + 0.01)

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialise the node to a plain dict with JSON-safe types."""
        return {
            "id": self.id,
            "layer": self.layer,
            "kind": self.kind,
            "content": self.content,
            "importance": self.importance,
            "connections": sorted(self.connections),
            "consolidation_score": self.consolidation_score,
            "strength_score": self.strength_score,
            "timestamp": self.timestamp.isoformat(),
            "access_count": self.access_count,
            "last_accessed": self.last_accessed.isoformat() if self.last_accessed else None,
        }


@dataclass(eq=False)
class VeridicalNode(MemoryNode):
    """An immediate fact or observation."""

    layer: ClassVar[str] = "veridical"
    kind: ClassVar[str] = "fact"

    fact_type: str = "observation"
    verification_status: str = "unverified"
    source_reference: str | None = None
    immediacy_score: float = 1.0

    def __post_init__(self) -> None:
        super().__post_init__()
        _validate_choice("fact type", self.fact_type, FACT_TYPES)
        _validate_choice("verification status", self.verification_status, VERIFICATION_STATUSES)

    @property
    def is_verified(self) -> bool:
        return self.verification_status == "verified"

    def verify(self, status: str) -> None:
        _validate_choice("verification status", status, VERIFICATION_STATUSES)
        self.verification_status = status
        if status == "verified":
            self.strength_score = min(1.0, (self.strength_score or 0.0) + 0.2)

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d.update(
            fact_type=self.fact_type,
            verification_status=self.verification_status,
            source_reference=self.source_reference,
            immediacy_score=self.immediacy_score,
        )
        return d


@dataclass(eq=False)
class SemanticNode(MemoryNode):
    """A consolidated concept.

    ``confidence`` defaults to the node's importance and is recomputed
    whenever evidence or contradictions are attached.
    """

    layer: ClassVar[str] = "semantic"
    kind: ClassVar[str] = "concept"

    concept_type: str = "entity"
    confidence: float | None = None
    abstraction_level: int = 0
    evidence_nodes: list[str] = field(default_factory=list)
    contradiction_nodes: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__post_init__()
        _validate_choice("concept type", self.concept_type, CONCEPT_TYPES)
        if self.confidence is None:
            self.confidence = self.importance
        self.confidence = _clamp(self.confidence)

    def add_evidence(self, node_id: str) -> None:
        if node_id not in self.evidence_nodes:
            self.evidence_nodes.append(node_id)
            self._update_confidence()

    def add_contradiction(self, node_id: str) -> None:
        if node_id not in self.contradiction_nodes:
            self.contradiction_nodes.append(node_id)
            self._update_confidence()

    def _update_confidence(self) -> None:
        evidence = len(self.evidence_nodes) * 0.1
        contradictions = len(self.contradiction_nodes) * 0.15
        self.confidence = _clamp(self.importance + evidence - contradictions)

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d.update(
            concept_type=self.concept_type,
            confidence=self.confidence,
            abstraction_level=self.abstraction_level,
            evidence_nodes=list(self.evidence_nodes),
            contradiction_nodes=list(self.contradiction_nodes),
        )
        return d


@dataclass(eq=False)
class EpisodicNode(MemoryNode):
    """An experience, anchored by its :class:`TemporalContext`."""

    layer: ClassVar[str] = "episodic"
    kind: ClassVar[str] = "episode"

    episode_type: str = "experience"
    temporal_context: TemporalContext | None = None
    participants: list[str] = field(default_factory=list)
    location: str | None = None
    emotional_valence: float = 0.0

    def __post_init__(self) -> None:
        super().__post_init__()
        _validate_choice("episode type", self.episode_type, EPISODE_TYPES)
        if self.temporal_context is None:
            self.temporal_context = TemporalContext.from_timestamp(self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d.update(
            episode_type=self.episode_type,
            temporal_context=self.temporal_context.to_dict() if self.temporal_context else None,
            participants=list(self.participants),
            location=self.location,
            emotional_valence=self.emotional_valence,
        )
        return d


@dataclass(eq=False)
class FusionNode(MemoryNode):
    """A derived node linking the nodes it was built from.

    Only :class:`~mindloop.fusion.FusionEngine` creates these.
    """

    layer: ClassVar[str] = "fusion"
    kind: ClassVar[str] = "fusion"

    importance: float = 0.8
    fused_layers: frozenset[str] = frozenset()
    source_nodes: tuple[str, ...] = ()
    fusion_type: str = "cross-layer"
    coherence_score: float = 0.0
    novelty_score: float = 1.0
    validation_status: str = "pending"

    def __post_init__(self) -> None:
        super().__post_init__()
        _validate_choice("fusion type", self.fusion_type, FUSION_TYPES)
        _validate_choice("validation status", self.validation_status, VALIDATION_STATUSES)
        for layer in self.fused_layers:
            _validate_choice("layer", layer, LAYERS)
        self.fused_layers = frozenset(self.fused_layers)
        self.source_nodes = tuple(self.source_nodes)

    def validate(self, status: str) -> None:
        """Record a validation verdict and adjust coherence and strength."""
        _validate_choice("validation status", status, VALIDATION_STATUSES)
        self.validation_status = status
        strength = self.strength_score or 0.0
        if status == "validated":
            self.coherence_score = min(1.0, self.coherence_score + 0.2)
            self.strength_score = min(1.0, strength + 0.3)
        elif status == "rejected":
            self.coherence_score = max(0.0, self.coherence_score - 0.3)
            self.strength_score = max(0.0, strength - 0.2)
        elif status == "uncertain":
            self.coherence_score *= 0.9

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d.update(
            fused_layers=sorted(self.fused_layers),
            source_nodes=list(self.source_nodes),
            fusion_type=self.fusion_type,
            coherence_score=self.coherence_score,
            novelty_score=self.novelty_score,
            validation_status=self.validation_status,
        )
        return d


NODE_CLASSES: dict[str, type[MemoryNode]] = {
    "veridical": VeridicalNode,
    "semantic": SemanticNode,
    "episodic": EpisodicNode,
    "fusion": FusionNode,
}


def layer_of(node: MemoryNode) -> str:
    """Return the layer tag of *node*.

    Nodes of an unrecognised kind are treated as semantic.
    """
    match node:
        case VeridicalNode():
            return "veridical"
        case SemanticNode():
            return "semantic"
        case EpisodicNode():
            return "episodic"
        case FusionNode():
            return "fusion"
        case _:
            return "semantic"


def validate_layer(layer: str) -> None:
    """Raise :class:`ValueError` if *layer* is not in :data:`LAYERS`."""
    _validate_choice("layer", layer, LAYERS)
