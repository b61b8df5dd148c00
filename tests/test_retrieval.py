"""Tests for RetrievalResult, the RetrievalService protocol and KeywordRetrieval."""

from __future__ import annotations

from mindloop.nodes import EpisodicNode, SemanticNode, VeridicalNode
from mindloop.reasoning import RetrievalStrategy
from mindloop.retrieval import KeywordRetrieval, RetrievalResult, RetrievalService
from mindloop.storage import MemoryStore

_FACTUAL = RetrievalStrategy("veridical", ("semantic",), "facts first", 0.8)


class TestRetrievalResult:
    def test_from_nodes_counts_layers(self) -> None:
        nodes = [VeridicalNode(content="a"), VeridicalNode(content="b"), EpisodicNode(content="c")]
        result = RetrievalResult.from_nodes(nodes, total_relevance_score=1.5)
        assert result.layer_distribution == {"veridical": 2, "episodic": 1}
        assert result.to_dict()["retrieved_nodes"] == [n.id for n in nodes]

    def test_empty_defaults(self) -> None:
        result = RetrievalResult()
        assert result.retrieved_nodes == []
        assert result.total_relevance_score == 0.0
        assert result.layer_distribution == {}


class TestKeywordRetrieval:
    def test_satisfies_protocol(self, store: MemoryStore) -> None:
        assert isinstance(KeywordRetrieval(store), RetrievalService)

    async def test_ranks_by_overlap_and_skips_other_layers(self, store: MemoryStore) -> None:
        best = store.add_node(VeridicalNode(content="budget review friday", importance=0.5))
        weaker = store.add_node(SemanticNode(content="budget planning process", importance=0.5))
        store.add_node(VeridicalNode(content="printer toner", importance=1.0))
        store.add_node(EpisodicNode(content="budget review friday", importance=1.0))

        result = await KeywordRetrieval(store).retrieve("budget review friday", _FACTUAL)

        assert result.retrieved_nodes == [best, weaker]
        assert result.layer_distribution == {"veridical": 1, "semantic": 1}
        assert result.total_relevance_score > 0
        assert result.retrieval_context.startswith("Retrieved 2 memories")

    async def test_records_access(self, store: MemoryStore) -> None:
        node = store.add_node(VeridicalNode(content="budget review", importance=0.5))
        await KeywordRetrieval(store).retrieve("budget", _FACTUAL)
        assert node.access_count == 1
        assert node.importance > 0.5

    async def test_max_nodes(self, store: MemoryStore) -> None:
        for i in range(5):
            store.add_node(VeridicalNode(content=f"budget item {i}"))
        result = await KeywordRetrieval(store, max_nodes=2).retrieve("budget", _FACTUAL)
        assert len(result.retrieved_nodes) == 2

    async def test_no_overlap_returns_empty(self, store: MemoryStore) -> None:
        store.add_node(VeridicalNode(content="printer toner", importance=1.0))
        result = await KeywordRetrieval(store).retrieve("budget", _FACTUAL)
        assert result.retrieved_nodes == []
        assert result.retrieval_context == ""
