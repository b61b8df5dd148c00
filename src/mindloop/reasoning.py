"""Reasoning trajectories: the first stage of the control loop.

The **reasoning engine** turns a query into an ordered trajectory of four
steps -- query analysis, approach selection, retrieval strategy and
consolidation plan -- whose likelihood is the running product of the step
confidences.  When the caller wants alternatives it derives exploration
variants from that trajectory by decaying every step and re-weighting the
whole path with a pluggable multiplier.

Trajectories are frozen values.  Variants are always built from copies of
the original steps; nothing here mutates a trajectory in place.

Usage::

    from mindloop.reasoning import ReasoningEngine

    engine = ReasoningEngine(rng=random.Random(7))
    trajectory = await engine.generate_initial_trajectory(query, ctx, max_depth=5)
    variants = await engine.generate_exploration_trajectories(trajectory, ctx, 3)
"""

from __future__ import annotations

import logging
import random
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

from mindloop.config import get_config
from mindloop.context import CognitiveContext

if TYPE_CHECKING:
    from mindloop.consolidation import ConsolidationResult

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

STEP_TYPES: tuple[str, ...] = (
    "initial",
    "inference",
    "retrieval",
    "consolidation",
    "exploration",
)
"""Allowed values for :attr:`ReasoningStep.step_type`."""

INITIAL_STEP_ORDER: tuple[str, ...] = ("initial", "inference", "retrieval", "consolidation")
"""Step types of an initial trajectory, in order."""

_QUERY_ANALYSIS_CONFIDENCE: float = 0.9
_EXPLORATION_STEP_CONFIDENCE: float = 0.7

_APPROACH_KEYWORDS: tuple[tuple[str, frozenset[str]], ...] = (
    ("factual", frozenset({"when", "where", "who", "what"})),
    ("conceptual", frozenset({"why", "how", "explain", "understand"})),
    ("experiential", frozenset({"remember", "experience", "happened", "felt"})),
)
"""Checked in order; the first approach whose keywords appear wins."""

EXPLORATION_MARKERS: tuple[str, ...] = (
    "alternatively",
    "considering another angle",
    "exploring different perspective",
    "alternative approach",
)
"""Prefixes rotated by variant index on every copied exploration step."""


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ReasoningStep:
    """One step of a trajectory."""

    content: str
    step_type: str
    confidence: float
    memory_references: tuple[str, ...] = ()
    step_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        if self.step_type not in STEP_TYPES:
            raise ValueError(
                f"Invalid step type {self.step_type!r}. "
                f"Must be one of: {', '.join(STEP_TYPES)}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "content": self.content,
            "step_type": self.step_type,
            "confidence": self.confidence,
            "memory_references": list(self.memory_references),
        }


@dataclass(frozen=True, slots=True)
class ReasoningTrajectory:
    """An ordered chain of steps with an aggregate likelihood.

    ``original_policy`` is ``True`` only for the output of
    :meth:`ReasoningEngine.generate_initial_trajectory`.
    """

    steps: tuple[ReasoningStep, ...]
    likelihood: float
    is_explored: bool = False
    original_policy: bool = False
    correctness_score: float = 0.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @property
    def text(self) -> str:
        """Step contents joined into a single reasoning line."""
        return " → ".join(step.content for step in self.steps)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "steps": [step.to_dict() for step in self.steps],
            "likelihood": self.likelihood,
            "is_explored": self.is_explored,
            "original_policy": self.original_policy,
            "correctness_score": self.correctness_score,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class ReasoningResult:
    """The reasoning stage's output handed to consolidation."""

    reasoning: str
    confidence: float
    trajectory: ReasoningTrajectory


@dataclass(frozen=True, slots=True)
class ReasoningApproach:
    type: str
    description: str
    confidence: float


@dataclass(frozen=True, slots=True)
class RetrievalStrategy:
    """Which layers the retrieval service should search, and how eagerly."""

    primary_layer: str
    secondary_layers: tuple[str, ...]
    description: str
    confidence: float

    @property
    def layers(self) -> tuple[str, ...]:
        return (self.primary_layer, *self.secondary_layers)


@dataclass(frozen=True, slots=True)
class ConsolidationPlan:
    strategy: str
    description: str
    confidence: float


_APPROACHES: dict[str, ReasoningApproach] = {
    "factual": ReasoningApproach("factual", "Factual retrieval from veridical layer", 0.85),
    "conceptual": ReasoningApproach("conceptual", "Conceptual analysis using semantic layer", 0.8),
    "experiential": ReasoningApproach("experiential", "Experiential recall from episodic layer", 0.75),
    "integrative": ReasoningApproach("integrative", "Cross-layer integration and fusion", 0.7),
}

_STRATEGIES: dict[str, RetrievalStrategy] = {
    "factual": RetrievalStrategy(
        "veridical", ("semantic",),
        "Focus on immediate facts with semantic support", 0.8,
    ),
    "conceptual": RetrievalStrategy(
        "semantic", ("veridical", "episodic"),
        "Semantic-focused with evidence from other layers", 0.85,
    ),
    "experiential": RetrievalStrategy(
        "episodic", ("semantic",),
        "Episodic memories with conceptual context", 0.75,
    ),
    "integrative": RetrievalStrategy(
        "fusion", ("veridical", "semantic", "episodic"),
        "Cross-layer integration with fusion emphasis", 0.9,
    ),
}


# ---------------------------------------------------------------------------
# Reasoning engine
# ---------------------------------------------------------------------------


class ReasoningEngine:
    """Generates reasoning trajectories and renders the final answer.

    The only non-deterministic element is the exploration likelihood
    multiplier.  Pass a seeded *rng*, or a *likelihood_multiplier* callable
    of your own, to make exploration reproducible or to swap in a learned
    ranking.

    Parameters
    ----------
    rng:
        Random source used by the default multiplier.
    likelihood_multiplier:
        ``f(original, variant_index) -> float`` applied to each variant's
        likelihood.  Defaults to a uniform draw from the configured range.
    exploration_bias:
        Fraction of the original likelihood given up by every variant.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        likelihood_multiplier: Callable[[ReasoningTrajectory, int], float] | None = None,
        exploration_bias: float | None = None,
    ) -> None:
        self._cfg = get_config().reasoning
        self._rng = rng or random.Random()
        self._likelihood_multiplier = likelihood_multiplier or self._uniform_multiplier
        self._exploration_bias = (
            self._cfg.exploration_bias if exploration_bias is None else exploration_bias
        )

    # ------------------------------------------------------------------
    # Initial trajectory
    # ------------------------------------------------------------------

    async def generate_initial_trajectory(
        self,
        query: str,
        context: CognitiveContext,
        max_depth: int,
    ) -> ReasoningTrajectory:
        """Build the original-policy trajectory for *query*.

        Always four steps (analysis, approach, retrieval strategy,
        consolidation plan), so *max_depth* below four is ignored.
        """
        logger.debug("Generating initial trajectory for: %.50s", query)

        approach = self.determine_approach(query)
        strategy = _STRATEGIES[approach.type]
        plan = self.plan_consolidation(context)

        steps = (
            ReasoningStep(f"Analyzing query: {query}", "initial", _QUERY_ANALYSIS_CONFIDENCE),
            ReasoningStep(f"Reasoning approach: {approach.description}", "inference", approach.confidence),
            ReasoningStep(f"Retrieval strategy: {strategy.description}", "retrieval", strategy.confidence),
            ReasoningStep(f"Consolidation plan: {plan.description}", "consolidation", plan.confidence),
        )

        likelihood = 1.0
        for step in steps:
            likelihood *= step.confidence

        logger.debug(
            "Initial trajectory: approach=%s plan=%s likelihood=%.4f (max_depth=%d)",
            approach.type, plan.strategy, likelihood, max_depth,
        )
        return ReasoningTrajectory(
            steps=steps,
            likelihood=likelihood,
            is_explored=False,
            original_policy=True,
            correctness_score=likelihood,
        )

    # ------------------------------------------------------------------
    # Exploration trajectories
    # ------------------------------------------------------------------

    async def generate_exploration_trajectories(
        self,
        original: ReasoningTrajectory,
        context: CognitiveContext,
        max_alternatives: int,
    ) -> list[ReasoningTrajectory]:
        """Derive up to *max_alternatives* alternative paths from *original*."""
        variants = [
            self._exploration_variant(original, index)
            for index in range(max(0, max_alternatives))
        ]
        logger.debug("Generated %d exploration trajectories", len(variants))
        return variants

    def _exploration_variant(
        self,
        original: ReasoningTrajectory,
        variant_index: int,
    ) -> ReasoningTrajectory:
        marker = EXPLORATION_MARKERS[variant_index % len(EXPLORATION_MARKERS)]
        decay = self._cfg.exploration_step_decay

        steps = [
            ReasoningStep(
                f"Exploring alternative reasoning path #{variant_index + 1}",
                "exploration",
                _EXPLORATION_STEP_CONFIDENCE,
            )
        ]
        steps.extend(
            replace(
                step,
                content=f"{marker}: {step.content}",
                confidence=step.confidence * decay,
                step_id=uuid.uuid4().hex,
            )
            for step in original.steps
        )

        multiplier = self._likelihood_multiplier(original, variant_index)
        likelihood = original.likelihood * (1.0 - self._exploration_bias) * multiplier
        return ReasoningTrajectory(
            steps=tuple(steps),
            likelihood=likelihood,
            is_explored=False,
            original_policy=False,
            correctness_score=likelihood,
        )

    def _uniform_multiplier(self, original: ReasoningTrajectory, variant_index: int) -> float:
        low, high = self._cfg.exploration_multiplier_range
        return self._rng.uniform(low, high)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    @staticmethod
    def select_trajectory(trajectories: list[ReasoningTrajectory]) -> ReasoningTrajectory:
        """Return the highest-likelihood trajectory (earliest on ties).

        Raises
        ------
        ValueError
            If *trajectories* is empty.
        """
        if not trajectories:
            raise ValueError("No trajectories to select from")
        best = trajectories[0]
        for trajectory in trajectories[1:]:
            if trajectory.likelihood > best.likelihood:
                best = trajectory
        return best

    @staticmethod
    def to_result(trajectory: ReasoningTrajectory) -> ReasoningResult:
        return ReasoningResult(
            reasoning=trajectory.text,
            confidence=trajectory.likelihood,
            trajectory=trajectory,
        )

    # ------------------------------------------------------------------
    # Final response
    # ------------------------------------------------------------------

    async def generate_final_response(
        self,
        query: str,
        consolidation: ConsolidationResult,
        trajectory: ReasoningTrajectory,
    ) -> str:
        """Render the answer text from a consolidation result."""
        components = [consolidation.consolidated_knowledge]
        if consolidation.new_insights:
            components.append("Key insights: " + "; ".join(consolidation.new_insights))

        confidence = consolidation.consolidation_confidence
        if confidence < self._cfg.low_confidence_annotation:
            components.append(f"(Confidence: {confidence * 100:.1f}%)")

        return "\n\n".join(components)

    # ------------------------------------------------------------------
    # Heuristics
    # ------------------------------------------------------------------

    @staticmethod
    def determine_approach(query: str) -> ReasoningApproach:
        words = set(query.lower().split())
        for approach_type, keywords in _APPROACH_KEYWORDS:
            if words & keywords:
                return _APPROACHES[approach_type]
        return _APPROACHES["integrative"]

    def retrieval_strategy_for(self, query: str) -> RetrievalStrategy:
        """Retrieval strategy matching the approach chosen for *query*."""
        return _STRATEGIES[self.determine_approach(query).type]

    @staticmethod
    def plan_consolidation(context: CognitiveContext) -> ConsolidationPlan:
        if context.memory_state.system_load_factor > 0.8:
            return ConsolidationPlan(
                "conservative", "Conservative consolidation due to high memory pressure", 0.7,
            )
        if context.exploration_enabled:
            return ConsolidationPlan(
                "exploratory", "Exploratory consolidation with fusion emphasis", 0.8,
            )
        return ConsolidationPlan(
            "standard", "Standard consolidation with balanced approach", 0.85,
        )
