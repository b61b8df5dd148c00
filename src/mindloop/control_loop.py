"""Cognitive control loop: reason, retrieve, fuse, consolidate, resolve.

The :class:`ControlLoop` wires the engines together for one store.  A call
to :meth:`ControlLoop.process_query` runs:

1. **Reason** -- build the original-policy trajectory.  When exploration is
   enabled and its likelihood is below ``exploration_threshold``, add
   exploration variants and keep the most likely path.
2. **Retrieve** -- ask the :class:`~mindloop.retrieval.RetrievalService`
   for nodes using the strategy chosen for the query.
3. **Fuse** and **consolidate** the retrieved nodes.
4. **Correct** -- if confidence is still below the threshold, replay
   retrieval, fusion and consolidation for a few unexplored variants and
   keep the most confident outcome.
5. **Commit** -- store the fusion nodes and connection updates of the
   winning path only.
6. **Resolve** -- render the answer text.

Paths are evaluated with ``commit=False`` so that a discarded path leaves
no fusion nodes or score bumps behind.  A replay whose retrieval returns
the same nodes as the original path is skipped.

Queries on one loop are serialised by an :class:`asyncio.Lock`.
Cancellation of the awaiting task propagates unchanged: a query cancelled
during retrieval never reaches fusion or consolidation.

Usage::

    from mindloop.control_loop import ControlLoop
    from mindloop.storage import MemoryStore

    loop = ControlLoop(MemoryStore(nodes))
    response = await loop.process_query("What did Sarah say about the budget?")
    print(response.response, response.confidence)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from mindloop.config import get_config
from mindloop.consolidation import ConsolidationEngine, ConsolidationResult
from mindloop.context import CognitiveContext
from mindloop.fusion import FusionEngine, FusionResult
from mindloop.reasoning import ReasoningEngine, ReasoningResult, ReasoningTrajectory
from mindloop.retrieval import KeywordRetrieval, RetrievalResult, RetrievalService
from mindloop.storage import MemoryStore

logger = logging.getLogger(__name__)

PHASES: tuple[str, ...] = (
    "idle",
    "reasoning",
    "retrieving",
    "fusing",
    "consolidating",
    "exploring",
    "resolving",
)
"""Values reported by :attr:`ControlLoopStatus.current_phase`."""


# ---------------------------------------------------------------------------
# Result records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CognitiveMetrics:
    """Counters for one completed query."""

    processing_time_ms: float
    memory_hits: int
    layers_engaged: int
    fusion_operations: int
    confidence_score: float
    exploration_paths: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "processing_time_ms": round(self.processing_time_ms, 3),
            "memory_hits": self.memory_hits,
            "layers_engaged": self.layers_engaged,
            "fusion_operations": self.fusion_operations,
            "confidence_score": self.confidence_score,
            "exploration_paths": self.exploration_paths,
        }


@dataclass(frozen=True, slots=True)
class CognitiveResponse:
    """Everything the loop produced for one query.

    ``reasoning`` and ``memory_context`` belong to the same path as
    ``consolidation``: when policy correction wins, they describe the
    corrected path.
    """

    response: str
    reasoning: ReasoningResult
    memory_context: RetrievalResult
    consolidation: ConsolidationResult
    confidence: float
    metrics: CognitiveMetrics
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "response": self.response,
            "reasoning": self.reasoning.reasoning,
            "trajectory": self.reasoning.trajectory.to_dict(),
            "memory_context": self.memory_context.to_dict(),
            "consolidation": self.consolidation.to_dict(),
            "confidence": self.confidence,
            "metrics": self.metrics.to_dict(),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class ControlLoopStatus:
    current_phase: str
    is_processing: bool
    active_trajectories: int
    last_cycle_metrics: CognitiveMetrics | None
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))


@dataclass
class _PathOutcome:
    reasoning: ReasoningResult
    retrieval: RetrievalResult
    fusion: FusionResult
    consolidation: ConsolidationResult

    @property
    def retrieved_ids(self) -> list[str]:
        return [node.id for node in self.retrieval.retrieved_nodes]

    @property
    def confidence(self) -> float:
        return self.consolidation.consolidation_confidence


# ---------------------------------------------------------------------------
# ControlLoop
# ---------------------------------------------------------------------------


class ControlLoop:
    """Runs the cognitive cycle against one :class:`MemoryStore`.

    Parameters
    ----------
    store:
        The shared memory store.
    retrieval:
        Retrieval service.  Defaults to :class:`KeywordRetrieval` over *store*.
    reasoning_engine, fusion_engine, consolidation_engine:
        Engine overrides; defaults are built from *store* and the config.
    exploration_threshold:
        Likelihood below which exploration variants are generated, and
        confidence below which policy correction runs.
    max_alternatives:
        Number of exploration variants generated per query.
    """

    def __init__(
        self,
        store: MemoryStore,
        retrieval: RetrievalService | None = None,
        *,
        reasoning_engine: ReasoningEngine | None = None,
        fusion_engine: FusionEngine | None = None,
        consolidation_engine: ConsolidationEngine | None = None,
        exploration_threshold: float | None = None,
        max_alternatives: int | None = None,
    ) -> None:
        cfg = get_config().control_loop
        self._store = store
        self._retrieval = retrieval if retrieval is not None else KeywordRetrieval(store)
        self._reasoning = reasoning_engine or ReasoningEngine()
        self._fusion = fusion_engine or FusionEngine(store)
        self._consolidation = consolidation_engine or ConsolidationEngine(store)
        self.exploration_threshold = (
            cfg.exploration_threshold if exploration_threshold is None else exploration_threshold
        )
        self.max_alternatives = cfg.max_alternatives if max_alternatives is None else max_alternatives
        self._max_reasoning_depth = cfg.max_reasoning_depth
        self._max_policy_corrections = cfg.max_policy_corrections

        self._lock = asyncio.Lock()
        self._phase = "idle"
        self._is_processing = False
        self._active_trajectories: list[ReasoningTrajectory] = []
        self._last_metrics: CognitiveMetrics | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process_query(
        self,
        query: str,
        context: CognitiveContext | None = None,
    ) -> CognitiveResponse:
        """Answer *query* from memory.

        Raises
        ------
        asyncio.CancelledError
            If the awaiting task is cancelled; no later phase runs.
        """
        async with self._lock:
            start = time.monotonic()
            if context is None:
                context = CognitiveContext.from_store(
                    self._store, query, reasoning_depth=self._max_reasoning_depth,
                )
            self._is_processing = True
            logger.info("Starting control loop for query: %.50s", query)
            try:
                reasoning = await self.reason(query, context)
                outcome = await self._run_path(query, reasoning)

                if outcome.confidence < self.exploration_threshold:
                    self._phase = "exploring"
                    outcome = await self._policy_correction(query, outcome)

                outcome = await self._commit_path(outcome)

                self._phase = "resolving"
                text = await self._reasoning.generate_final_response(
                    query, outcome.consolidation, outcome.reasoning.trajectory,
                )
                metrics = CognitiveMetrics(
                    processing_time_ms=(time.monotonic() - start) * 1000,
                    memory_hits=len(outcome.retrieval.retrieved_nodes),
                    layers_engaged=len(outcome.retrieval.layer_distribution),
                    fusion_operations=len(outcome.consolidation.fused_connections),
                    confidence_score=outcome.confidence,
                    exploration_paths=len(self._active_trajectories),
                )
                self._last_metrics = metrics
            finally:
                self._is_processing = False
                self._phase = "idle"

            logger.info(
                "Control loop completed in %.1fms: hits=%d fusions=%d confidence=%.3f",
                metrics.processing_time_ms, metrics.memory_hits,
                metrics.fusion_operations, metrics.confidence_score,
            )
            return CognitiveResponse(
                response=text,
                reasoning=outcome.reasoning,
                memory_context=outcome.retrieval,
                consolidation=outcome.consolidation,
                confidence=outcome.confidence,
                metrics=metrics,
            )

    async def reason(self, query: str, context: CognitiveContext) -> ReasoningResult:
        """Build trajectories for *query* and return the selected one.

        The selected trajectory is recorded as explored; the others stay
        available for policy correction.
        """
        self._phase = "reasoning"
        initial = await self._reasoning.generate_initial_trajectory(
            query, context, max_depth=context.reasoning_depth,
        )
        trajectories = [initial]
        if context.exploration_enabled and initial.likelihood < self.exploration_threshold:
            trajectories.extend(
                await self._reasoning.generate_exploration_trajectories(
                    initial, context, self.max_alternatives,
                )
            )

        selected = replace(self._reasoning.select_trajectory(trajectories), is_explored=True)
        self._active_trajectories = [
            selected if trajectory.id == selected.id else trajectory
            for trajectory in trajectories
        ]
        logger.debug(
            "Selected trajectory %s (likelihood %.4f) from %d candidates",
            selected.id, selected.likelihood, len(trajectories),
        )
        return self._reasoning.to_result(selected)

    def status(self) -> ControlLoopStatus:
        return ControlLoopStatus(
            current_phase=self._phase,
            is_processing=self._is_processing,
            active_trajectories=len(self._active_trajectories),
            last_cycle_metrics=self._last_metrics,
        )

    def reset(self) -> None:
        """Forget trajectories and metrics from earlier queries."""
        self._phase = "idle"
        self._is_processing = False
        self._active_trajectories = []
        self._last_metrics = None
        logger.info("Control loop reset")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_path(self, query: str, reasoning: ReasoningResult) -> _PathOutcome:
        """Evaluate one path without writing fusion or consolidation results."""
        retrieval = await self._retrieve(query)
        return await self._evaluate(reasoning, retrieval)

    async def _retrieve(self, query: str) -> RetrievalResult:
        self._phase = "retrieving"
        strategy = self._reasoning.retrieval_strategy_for(query)
        return await self._retrieval.retrieve(query, strategy)

    async def _evaluate(self, reasoning: ReasoningResult, retrieval: RetrievalResult) -> _PathOutcome:
        self._phase = "fusing"
        fusion_result = await self._fusion.identify_and_create_fusions(
            retrieval.retrieved_nodes, reasoning.trajectory, commit=False,
        )

        self._phase = "consolidating"
        consolidation = await self._consolidation.consolidate_knowledge(
            reasoning, retrieval, fusion_result,
        )
        return _PathOutcome(reasoning, retrieval, fusion_result, consolidation)

    async def _commit_path(self, outcome: _PathOutcome) -> _PathOutcome:
        """Store the winning path's fusions and re-run consolidation for real."""
        self._phase = "fusing"
        fusion_result = self._fusion.commit(outcome.fusion)

        self._phase = "consolidating"
        consolidation = await self._consolidation.consolidate_knowledge(
            outcome.reasoning, outcome.retrieval, fusion_result,
        )
        return _PathOutcome(outcome.reasoning, outcome.retrieval, fusion_result, consolidation)

    async def _policy_correction(self, query: str, original: _PathOutcome) -> _PathOutcome:
        """Replay unexplored variants and keep the most confident path."""
        candidates = [
            trajectory for trajectory in self._active_trajectories
            if not trajectory.is_explored and not trajectory.original_policy
        ][: self._max_policy_corrections]
        if not candidates:
            return original

        best = original
        for trajectory in candidates:
            retrieval = await self._retrieve(query)
            if [node.id for node in retrieval.retrieved_nodes] == original.retrieved_ids:
                # Same nodes and a no-more-likely trajectory never score higher.
                logger.debug("Skipping replay of %s: retrieval unchanged", trajectory.id)
                self._phase = "exploring"
                continue
            outcome = await self._evaluate(self._reasoning.to_result(trajectory), retrieval)
            self._phase = "exploring"
            if outcome.confidence > best.confidence:
                logger.debug(
                    "Policy correction improved confidence %.3f -> %.3f",
                    best.confidence, outcome.confidence,
                )
                best = outcome
        return best
