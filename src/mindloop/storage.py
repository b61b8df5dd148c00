"""Shared in-memory store for the layered cognitive memory.

The store owns every node for the lifetime of the process and is the only
place where shared nodes are mutated.  Nodes reference each other by id
(``connections``, ``source_nodes``); the store resolves those ids on demand
and treats unknown ids as "not found" rather than as an error.

Concurrency strategy:
    - A single ``threading.Lock`` serialises every mutation: adding nodes,
      appending fusion nodes, adding connection ids, bumping consolidation
      scores and recording validation verdicts.
    - Reads never take the lock.  :meth:`MemoryStore.nodes` returns a tuple
      snapshot of a layer, so callers can iterate while another thread
      appends.
    - Fusion candidate generators run in worker threads (see
      :mod:`mindloop.fusion`), which is why the lock is a thread lock rather
      than an :class:`asyncio.Lock`.

Usage::

    from mindloop.storage import MemoryStore
    from mindloop.nodes import VeridicalNode

    store = MemoryStore()
    fact = store.add_node(VeridicalNode(content="Rent is due on the 1st"))
    assert store.find_node_by_id("veridical", fact.id) is fact
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator

from mindloop.context import MemorySystemState
from mindloop.nodes import (
    BASE_LAYERS,
    LAYERS,
    FusionNode,
    MemoryNode,
    layer_of,
    validate_layer,
)

log = logging.getLogger(__name__)


class MemoryStore:
    """Thread-safe, append-only node collections for the four memory layers.

    Parameters
    ----------
    nodes:
        Optional initial nodes (any layer except fusion) to ingest.
    system_load_factor:
        Reported through :meth:`memory_state`; surrounding layers update it
        via :attr:`system_load_factor`.
    """

    def __init__(
        self,
        nodes: Iterable[MemoryNode] = (),
        system_load_factor: float = 0.0,
    ) -> None:
        self._write_lock = threading.Lock()
        self._layers: dict[str, list[MemoryNode]] = {layer: [] for layer in LAYERS}
        self._index: dict[str, MemoryNode] = {}
        self.system_load_factor = system_load_factor
        for node in nodes:
            self.add_node(node)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def add_node(self, node: MemoryNode) -> MemoryNode:
        """Store a base-layer node produced by upstream ingestion.

        Raises
        ------
        ValueError
            If *node* is a :class:`FusionNode` (use
            :meth:`append_fusion_node`) or its id is already stored.
        """
        if isinstance(node, FusionNode):
            raise ValueError("Fusion nodes must be added with append_fusion_node()")
        with self._write_lock:
            self._insert(node)
        return node

    def append_fusion_node(self, node: FusionNode) -> FusionNode:
        """Append a fusion node and return it.

        Every id in ``node.source_nodes`` must already be stored.  Once the
        node is appended, later disappearance of a source is tolerated.

        Raises
        ------
        ValueError
            If ``source_nodes`` is empty or the id is already stored.
        KeyError
            If a source id is unknown.
        """
        if not node.source_nodes:
            raise ValueError("Fusion node must reference at least one source node")
        with self._write_lock:
            missing = [sid for sid in node.source_nodes if sid not in self._index]
            if missing:
                raise KeyError(f"Unknown source node(s): {', '.join(missing)}")
            self._insert(node)
        log.debug("Appended fusion node %s (%s)", node.id, node.fusion_type)
        return node

    def _insert(self, node: MemoryNode) -> None:
        # Caller holds the write lock.
        if node.id in self._index:
            raise ValueError(f"Node {node.id!r} already stored")
        self._layers[layer_of(node)].append(node)
        self._index[node.id] = node

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def nodes(self, layer: str) -> tuple[MemoryNode, ...]:
        """Return a snapshot of the nodes in *layer*."""
        validate_layer(layer)
        return tuple(self._layers[layer])

    def fusion_nodes(self) -> tuple[FusionNode, ...]:
        return tuple(self._layers["fusion"])  # type: ignore[arg-type]

    def __iter__(self) -> Iterator[MemoryNode]:
        for layer in LAYERS:
            yield from self.nodes(layer)

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._index

    def find_node_by_id(self, layer: str, node_id: str) -> MemoryNode | None:
        """Return the node with *node_id* if it lives in *layer*, else ``None``."""
        validate_layer(layer)
        node = self._index.get(node_id)
        if node is None or layer_of(node) != layer:
            return None
        return node

    def find_node(self, node_id: str) -> MemoryNode | None:
        """Return the node with *node_id* from any layer, or ``None``."""
        return self._index.get(node_id)

    def find_base_node(self, node_id: str) -> MemoryNode | None:
        """Look *node_id* up in the veridical, semantic and episodic layers in turn."""
        for layer in BASE_LAYERS:
            node = self.find_node_by_id(layer, node_id)
            if node is not None:
                return node
        return None

    def find_fusion_node(self, node_id: str) -> FusionNode | None:
        node = self.find_node_by_id("fusion", node_id)
        return node if isinstance(node, FusionNode) else None

    def fusions_sharing_sources(self, source_ids: Iterable[str]) -> list[FusionNode]:
        """Return stored fusion nodes built from at least one of *source_ids*."""
        wanted = set(source_ids)
        return [f for f in self.fusion_nodes() if wanted.intersection(f.source_nodes)]

    def layer_counts(self) -> dict[str, int]:
        return {layer: len(self._layers[layer]) for layer in LAYERS}

    def memory_state(self) -> MemorySystemState:
        """Summarise the store for :class:`~mindloop.context.CognitiveContext`."""
        counts = self.layer_counts()
        return MemorySystemState(
            veridical_count=counts["veridical"],
            semantic_count=counts["semantic"],
            episodic_count=counts["episodic"],
            fusion_count=counts["fusion"],
            system_load_factor=self.system_load_factor,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_connection(self, node: MemoryNode, target_id: str) -> bool:
        """Add *target_id* to ``node.connections`` under the write lock.

        Returns ``True`` if the id was newly added.
        """
        with self._write_lock:
            return node.add_connection(target_id)

    def connect(self, first: MemoryNode, second: MemoryNode) -> bool:
        """Add a bidirectional connection between two nodes.

        Returns ``True`` if either direction was newly added.
        """
        with self._write_lock:
            added_forward = first.add_connection(second.id)
            added_back = second.add_connection(first.id)
        return added_forward or added_back

    def connect_ids(self, first_id: str, second_id: str) -> bool:
        """Like :meth:`connect` but by id; unknown ids are a silent no-op."""
        first = self.find_node(first_id)
        second = self.find_node(second_id)
        if first is None or second is None:
            return False
        return self.connect(first, second)

    def bump_consolidation_score(self, node_id: str, amount: float) -> bool:
        """Increase a base node's consolidation score, capped at 1.0.

        Returns ``False`` if *node_id* is not found in any base layer.
        """
        node = self.find_base_node(node_id)
        if node is None:
            return False
        with self._write_lock:
            node.consolidation_score = min(1.0, node.consolidation_score + max(0.0, amount))
        return True

    def record_access(self, node: MemoryNode) -> None:
        """Register a retrieval of *node* under the write lock."""
        with self._write_lock:
            node.record_access()

    def validate_fusion(self, node_id: str, status: str) -> FusionNode | None:
        """Record a validation verdict on a fusion node; ``None`` if unknown."""
        fusion = self.find_fusion_node(node_id)
        if fusion is None:
            return None
        with self._write_lock:
            fusion.validate(status)
        log.info("Fusion node %s marked %s", node_id, status)
        return fusion
