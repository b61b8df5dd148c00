"""Tests for CognitiveContext and MemorySystemState."""

from __future__ import annotations

from datetime import datetime, timezone

from mindloop.context import CognitiveContext, MemorySystemState
from mindloop.nodes import EpisodicNode, VeridicalNode
from mindloop.storage import MemoryStore


class TestMemorySystemState:
    def test_to_dict(self) -> None:
        ts = datetime(2024, 5, 1, tzinfo=timezone.utc)
        state = MemorySystemState(veridical_count=2, system_load_factor=0.5, last_consolidation=ts)
        d = state.to_dict()
        assert d["veridical_count"] == 2
        assert d["system_load_factor"] == 0.5
        assert d["last_consolidation"] == ts.isoformat()
        assert MemorySystemState().to_dict()["last_consolidation"] is None


class TestCognitiveContext:
    def test_defaults(self) -> None:
        ctx = CognitiveContext(user_query="q")
        assert ctx.exploration_enabled is True
        assert ctx.reasoning_depth == 5
        assert ctx.memory_state.system_load_factor == 0.0

    def test_from_store_snapshots_state(self) -> None:
        store = MemoryStore([VeridicalNode(content="a"), EpisodicNode(content="b")], system_load_factor=0.3)
        ctx = CognitiveContext.from_store(store, "what happened", exploration_enabled=False)
        assert ctx.user_query == "what happened"
        assert ctx.exploration_enabled is False
        assert ctx.memory_state.veridical_count == 1
        assert ctx.memory_state.episodic_count == 1
        assert ctx.memory_state.system_load_factor == 0.3

        store.add_node(VeridicalNode(content="later"))
        assert ctx.memory_state.veridical_count == 1
