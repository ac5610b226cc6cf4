"""
Tests for SearchEngine: topic and item ranking, neighbour expansion, edge
filtering and the combined item list.
"""

import numpy as np
import pytest

from topicgraph.core.models import Item, OwnerType, Topic, TopicEdge
from topicgraph.core.search_engine import SearchOptions, TopicSearchResult
from topicgraph.core.settings import GraphSettings

from tests.mocks import rotated, vec


@pytest.fixture
def seeded(manager, graph_id):
    """
    python (1.0 to the query), snakes (0.5), rust (0.0) and an unplaced
    duplicate of python; three items, one without a vector.
    """
    store = manager.store
    topics = {
        "python": (vec(1), (0.0, 0.0, 0.0)),
        "snakes": (rotated(0.5, axis=2), (1.0, 0.0, 0.0)),
        "rust": (vec(0, 1), (2.0, 0.0, 0.0)),
        "unplaced": (vec(1), None),
    }
    with store.transaction() as tx:
        for label, (embedding, position) in topics.items():
            x, y, z = position if position else (None, None, None)
            tx.insert_topic(Topic(id=label, graph_id=graph_id, label=label, x=x, y=y, z=z))
            tx.put_vector(graph_id, OwnerType.TOPIC, label, embedding)
        tx.insert_edge(TopicEdge.related_to(graph_id, "python", "snakes", 0.5))
        tx.insert_edge(TopicEdge.broader_than(graph_id, "python", "rust", 0.3))
        tx.insert_edge(TopicEdge.related_to(graph_id, "snakes", "rust", 0.2))

        for item_id, created_at, embedding, topic in (
            ("i1", 500, vec(1), "rust"),
            ("i2", 1000, vec(0, 1), "python"),
            ("i3", 2000, None, "python"),
        ):
            tx.insert_item(Item(id=item_id, graph_id=graph_id, title=item_id, summary="",
                                link=f"https://example.org/{item_id}", created_at=created_at))
            if embedding is not None:
                tx.put_vector(graph_id, OwnerType.ITEM, item_id, embedding)
            tx.link_item_topic(graph_id, item_id, topic)
    return manager.search


class TestFindSimilar:

    def test_topics_above_threshold_best_first(self, seeded, graph_id):
        results = seeded.find_similar_topics(graph_id, vec(1), top_k=5, threshold=0.4)
        assert [r.topic.id for r in results] == ["python", "snakes"]
        assert results[0].similarity == pytest.approx(1.0)
        assert results[1].similarity == pytest.approx(0.5)

    def test_unpositioned_topics_skipped(self, seeded, graph_id):
        results = seeded.find_similar_topics(graph_id, vec(1), top_k=10, threshold=-1.0)
        assert "unplaced" not in [r.topic.id for r in results]
        assert len(results) == 3

    def test_top_k(self, seeded, graph_id):
        assert len(seeded.find_similar_topics(graph_id, vec(1), top_k=1, threshold=0.0)) == 1

    def test_threshold_from_settings(self, seeded, manager, graph_id):
        settings = GraphSettings.model_validate({"search": {"similarity_threshold": 0.9}})
        manager.save_settings(graph_id, settings)
        assert [r.topic.id for r in seeded.find_similar_topics(graph_id, vec(1))] == ["python"]

    def test_items(self, seeded, graph_id):
        results = seeded.find_similar_items(graph_id, vec(1), top_k=10, threshold=0.4)
        assert [r.item.id for r in results] == ["i1"]

    def test_empty_graph(self, manager):
        other = manager.create_graph("Empty")
        assert manager.search.find_similar_topics(other.id, vec(1)) == []
        assert manager.search.find_similar_items(other.id, vec(1)) == []


class TestGraphHelpers:

    def test_expand_adds_neighbours_of_best_hit(self, seeded, graph_id):
        hits = seeded.find_similar_topics(graph_id, vec(1), threshold=0.4)
        expanded = seeded.expand_with_neighbors(graph_id, hits)
        assert [r.topic.id for r in expanded] == ["python", "snakes", "rust"]
        assert expanded[2].similarity == 0.0

    def test_expand_nothing(self, seeded, graph_id):
        assert seeded.expand_with_neighbors(graph_id, []) == []

    def test_expand_skips_unplaced_neighbours(self, seeded, manager, graph_id):
        with manager.store.transaction() as tx:
            tx.insert_edge(TopicEdge.broader_than(graph_id, "python", "unplaced", 0.9))
        hits = seeded.find_similar_topics(graph_id, vec(1), threshold=0.4)
        expanded = seeded.expand_with_neighbors(graph_id, hits)

        assert "unplaced" not in [r.topic.id for r in expanded]
        assert all(r.topic.has_position for r in expanded)

    def test_relevant_edges_strongest_first(self, seeded, manager, graph_id):
        topics = {t.id: t for t in manager.store.list_topics(graph_id)}
        highlighted = [TopicSearchResult(topics[t], 0.0) for t in ("python", "snakes", "rust")]
        edges = seeded.filter_relevant_edges(graph_id, highlighted, max_edges=2)
        assert [e.similarity for e in edges] == pytest.approx([0.5, 0.3])

    def test_edges_need_both_endpoints(self, seeded, manager, graph_id):
        python = manager.store.get_topic(graph_id, "python")
        assert seeded.filter_relevant_edges(graph_id, [TopicSearchResult(python, 1.0)]) == []


class TestSearch:

    def test_full_search(self, seeded, graph_id):
        result = seeded.search(graph_id, vec(1), SearchOptions(topic_threshold=0.4, item_threshold=0.4))

        assert [r.topic.id for r in result.topic_results] == ["python", "snakes"]
        assert [r.topic.id for r in result.highlighted_topics] == ["python", "snakes", "rust"]
        assert len(result.edges) == 3
        # Direct hits first, then items reached through matched topics (newest first)
        assert [(h.item.id, h.similarity) for h in result.items] == [
            ("i1", pytest.approx(1.0)),
            ("i3", None),
            ("i2", None),
        ]

    def test_without_expansion(self, seeded, graph_id):
        options = SearchOptions(topic_threshold=0.4, item_threshold=0.4, expand_neighbors=False)
        result = seeded.search(graph_id, vec(1), options)
        assert [r.topic.id for r in result.highlighted_topics] == ["python", "snakes"]
        assert len(result.edges) == 1

    def test_max_edges_option(self, seeded, graph_id):
        result = seeded.search(graph_id, vec(1), SearchOptions(topic_threshold=0.4, max_edges=1))
        assert len(result.edges) == 1

    def test_no_matches(self, seeded, graph_id):
        result = seeded.search(graph_id, np.array(vec(0, 0, 0, 1)), SearchOptions(topic_threshold=0.4, item_threshold=0.4))
        assert result.topic_results == []
        assert result.items == []
        assert result.edges == []
