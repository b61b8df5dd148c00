"""mindloop -- layered cognitive memory with a reason/retrieve/fuse/consolidate loop.

Quick start::

    from mindloop import ControlLoop, MemoryStore, SemanticNode, VeridicalNode

    async def main():
        store = MemoryStore([
            VeridicalNode(content="The budget review is on Friday", fact_type="event"),
            SemanticNode(content="Quarterly budget planning", concept_type="process"),
        ])
        loop = ControlLoop(store)
        response = await loop.process_query("When is the budget review?")
        print(response.response)

For lower-level access, import from submodules::

    from mindloop.reasoning import ReasoningEngine, ReasoningTrajectory
    from mindloop.fusion import FusionEngine, FusionResult
    from mindloop.consolidation import ConsolidationEngine, ConsolidationResult
    from mindloop.retrieval import RetrievalService, KeywordRetrieval
"""

from __future__ import annotations

__version__ = "0.1.0"

# Public API exports
from mindloop.context import CognitiveContext, MemorySystemState
from mindloop.control_loop import CognitiveResponse, ControlLoop
from mindloop.nodes import (
    LAYERS,
    EpisodicNode,
    FusionNode,
    MemoryNode,
    SemanticNode,
    TemporalContext,
    VeridicalNode,
)
from mindloop.storage import MemoryStore

__all__ = [
    "__version__",
    "CognitiveContext",
    "CognitiveResponse",
    "ControlLoop",
    "EpisodicNode",
    "FusionNode",
    "LAYERS",
    "MemoryNode",
    "MemoryStore",
    "MemorySystemState",
    "SemanticNode",
    "TemporalContext",
    "VeridicalNode",
]
