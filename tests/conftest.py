"""Shared fixtures and hypothesis profiles for the mindloop test suite."""

from __future__ import annotations

import os
import random
from collections.abc import Iterator

import pytest
from hypothesis import Phase, Verbosity, settings

from mindloop.config import get_config
from mindloop.nodes import EpisodicNode, SemanticNode, TemporalContext, VeridicalNode
from mindloop.reasoning import ReasoningEngine, RetrievalStrategy
from mindloop.retrieval import RetrievalResult
from mindloop.storage import MemoryStore


# ---------------------------------------------------------------------------
# Hypothesis profiles
#
# HYPOTHESIS_PROFILE=fast|dev|ci selects one; individual tests may override
# with @settings(max_examples=N).
# ---------------------------------------------------------------------------

settings.register_profile(
    "fast",
    max_examples=10,
    phases=[Phase.generate],
    verbosity=Verbosity.quiet,
    deadline=None,
)

settings.register_profile(
    "dev",
    max_examples=50,
    phases=[Phase.generate, Phase.target, Phase.shrink],
    verbosity=Verbosity.normal,
    deadline=None,
)

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.generate, Phase.target, Phase.shrink, Phase.explain],
    verbosity=Verbosity.normal,
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "dev"))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

MONDAY_MORNING = TemporalContext(
    time_of_day="morning",
    day_of_week="monday",
    season="spring",
    relative_time="recently",
)


@pytest.fixture(autouse=True)
def _fresh_config() -> Iterator[None]:
    """Rebuild the cached config around every test.

    Tests that set ``MINDLOOP_*`` variables through ``monkeypatch`` must not
    leak their overrides into later tests.
    """
    get_config(reload=True)
    yield
    get_config(reload=True)


@pytest.fixture
def store() -> MemoryStore:
    """Provide an empty in-memory store."""
    return MemoryStore()


@pytest.fixture
def reasoning_engine() -> ReasoningEngine:
    """Reasoning engine with a seeded RNG so exploration is reproducible."""
    return ReasoningEngine(rng=random.Random(1234))


@pytest.fixture
def sarah_store() -> MemoryStore:
    """A small store mixing facts, a concept and two Monday-morning meetings."""
    nodes = [
        VeridicalNode(
            content="The budget review is scheduled for Friday",
            fact_type="event",
            importance=0.7,
        ),
        VeridicalNode(
            content="Sarah leads the marketing budget",
            fact_type="statement",
            importance=0.6,
            verification_status="verified",
        ),
        SemanticNode(
            content="Quarterly budget planning process",
            concept_type="process",
            importance=0.8,
        ),
        EpisodicNode(
            content="I met Sarah about budget",
            episode_type="interaction",
            importance=0.7,
            temporal_context=MONDAY_MORNING,
            participants=["Sarah"],
        ),
        EpisodicNode(
            content="Sarah discussed marketing budget with me",
            episode_type="conversation",
            importance=0.7,
            temporal_context=MONDAY_MORNING,
            participants=["Sarah"],
        ),
    ]
    return MemoryStore(nodes)


class StaticRetrieval:
    """Retrieval service returning every node of the strategy's layers.

    Records each call so tests can assert how often retrieval ran.
    """

    def __init__(self, store: MemoryStore) -> None:
        self._store = store
        self.calls: list[tuple[str, RetrievalStrategy]] = []

    async def retrieve(self, query: str, strategy: RetrievalStrategy) -> RetrievalResult:
        self.calls.append((query, strategy))
        nodes = [node for layer in strategy.layers for node in self._store.nodes(layer)]
        return RetrievalResult.from_nodes(
            nodes,
            total_relevance_score=0.5 * len(nodes),
            retrieval_context=f"{len(nodes)} nodes",
        )


@pytest.fixture
def static_retrieval(sarah_store: MemoryStore) -> StaticRetrieval:
    return StaticRetrieval(sarah_store)

