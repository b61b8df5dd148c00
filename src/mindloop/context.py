"""Caller-supplied context for a single query.

The control loop only reads two things from the context: the memory
system's load factor (to choose a consolidation plan) and whether
exploration trajectories are allowed.  The rest is carried for logging and
for surrounding layers.

Usage::

    from mindloop.context import CognitiveContext

    ctx = CognitiveContext.from_store(store, "What did Sarah say about the budget?")
    print(ctx.memory_state.system_load_factor)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mindloop.storage import MemoryStore


@dataclass(frozen=True, slots=True)
class MemorySystemState:
    """Point-in-time summary of the memory store."""

    veridical_count: int = 0
    semantic_count: int = 0
    episodic_count: int = 0
    fusion_count: int = 0
    system_load_factor: float = 0.0
    last_consolidation: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "veridical_count": self.veridical_count,
            "semantic_count": self.semantic_count,
            "episodic_count": self.episodic_count,
            "fusion_count": self.fusion_count,
            "system_load_factor": self.system_load_factor,
            "last_consolidation": (
                self.last_consolidation.isoformat() if self.last_consolidation else None
            ),
        }


@dataclass(frozen=True, slots=True)
class CognitiveContext:
    """Per-query context handed to the reasoning engine.

    Parameters
    ----------
    user_query:
        The natural-language query being answered.
    memory_state:
        Snapshot of the store; only ``system_load_factor`` influences
        reasoning.
    exploration_enabled:
        Allow alternative (exploration) trajectories.
    reasoning_depth:
        Upper bound on trajectory depth requested by the caller.
    focus_entities:
        Optional entity names the caller wants emphasised.
    """

    user_query: str = ""
    memory_state: MemorySystemState = field(default_factory=MemorySystemState)
    exploration_enabled: bool = True
    reasoning_depth: int = 5
    focus_entities: tuple[str, ...] = ()
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @classmethod
    def from_store(
        cls,
        store: MemoryStore,
        query: str,
        *,
        exploration_enabled: bool = True,
        reasoning_depth: int = 5,
    ) -> CognitiveContext:
        """Build a default context from the current state of *store*."""
        return cls(
            user_query=query,
            memory_state=store.memory_state(),
            exploration_enabled=exploration_enabled,
            reasoning_depth=reasoning_depth,
        )
