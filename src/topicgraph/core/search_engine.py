"""
Search Engine
=============
Exhaustive cosine search over a graph's topic and item vectors, plus the
graph-aware helpers used to present results:

  - neighbour expansion of the best topic hit
  - edges whose endpoints are both highlighted
  - items reached either directly or through a matched topic

Per-call arguments override the graph's search settings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
from loguru import logger

from .graph_store import GraphStore
from .models import Item, OwnerType, Topic, TopicEdge
from .settings import GraphSettings, default_settings, merge_stored
from .vector_math import as_matrix, as_vector, similarity_batch


@dataclass
class TopicSearchResult:
    topic: Topic
    similarity: float


@dataclass
class ItemSearchResult:
    item: Item
    similarity: float


@dataclass
class ItemHit:
    """An item in a search answer; similarity is None when reached via a topic."""

    item: Item
    similarity: Optional[float]


@dataclass
class SearchOptions:
    topic_count: Optional[int] = None
    item_count: Optional[int] = None
    topic_threshold: Optional[float] = None
    item_threshold: Optional[float] = None
    max_edges: Optional[int] = None
    expand_neighbors: bool = True


@dataclass
class SearchResult:
    highlighted_topics: List[TopicSearchResult] = field(default_factory=list)
    edges: List[TopicEdge] = field(default_factory=list)
    items: List[ItemHit] = field(default_factory=list)
    topic_results: List[TopicSearchResult] = field(default_factory=list)
    item_results: List[ItemSearchResult] = field(default_factory=list)


def _rank(query, ids: List[str], vectors: Dict[str, np.ndarray], threshold: float, top_k: int):
    """(id, similarity) pairs >= threshold, best first, stable on ties."""
    if not ids:
        return []
    q = as_vector(query)
    scores = similarity_batch(q, as_matrix([vectors[i] for i in ids]))
    hits = [(ids[k], float(scores[k])) for k in range(len(ids)) if scores[k] >= threshold]
    hits.sort(key=lambda pair: -pair[1])
    return hits[:top_k]


class SearchEngine:
    """Vector search and result assembly for one store."""

    def __init__(
        self,
        store: GraphStore,
        settings_loader: Optional[Callable[[str], GraphSettings]] = None,
    ):
        self.store = store
        self._settings_loader = settings_loader

    def settings(self, graph_id: str) -> GraphSettings:
        if self._settings_loader is not None:
            return self._settings_loader(graph_id)
        return merge_stored(self.store.load_settings(graph_id), default_settings())

    def find_similar_topics(
        self,
        graph_id: str,
        query,
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[TopicSearchResult]:
        """
        Topics most similar to ``query``.

        Topics without a position (not projected yet) or without a stored
        vector are skipped.
        """
        tuning = self.settings(graph_id).search
        top_k = tuning.topic_result_count if top_k is None else top_k
        threshold = tuning.similarity_threshold if threshold is None else threshold

        topics = {t.id: t for t in self.store.list_topics(graph_id) if t.has_position}
        vectors = self.store.get_vectors(graph_id, OwnerType.TOPIC)
        ids = [tid for tid in topics if tid in vectors]
        hits = _rank(query, ids, vectors, threshold, top_k)
        return [TopicSearchResult(topics[tid], sim) for tid, sim in hits]

    def find_similar_items(
        self,
        graph_id: str,
        query,
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[ItemSearchResult]:
        tuning = self.settings(graph_id).search
        top_k = tuning.item_result_count if top_k is None else top_k
        threshold = tuning.similarity_threshold if threshold is None else threshold

        items = {i.id: i for i in self.store.list_items(graph_id)}
        vectors = self.store.get_vectors(graph_id, OwnerType.ITEM)
        ids = [iid for iid in items if iid in vectors]
        hits = _rank(query, ids, vectors, threshold, top_k)
        return [ItemSearchResult(items[iid], sim) for iid, sim in hits]

    def expand_with_neighbors(
        self,
        graph_id: str,
        results: Sequence[TopicSearchResult],
        all_topics: Optional[Sequence[Topic]] = None,
    ) -> List[TopicSearchResult]:
        """
        Append the direct neighbours of the best hit, with similarity 0.

        Topics without a position are never added.
        """
        if not results:
            return []
        if all_topics is None:
            all_topics = self.store.list_topics(graph_id)
        by_id = {t.id: t for t in all_topics if t.has_position}
        best = results[0].topic.id
        present = {r.topic.id for r in results}

        expanded = list(results)
        for edge in self.store.list_edges(graph_id):
            if not edge.touches(best):
                continue
            other = edge.other(best)
            if other in present or other not in by_id:
                continue
            present.add(other)
            expanded.append(TopicSearchResult(by_id[other], 0.0))
        return expanded

    def filter_relevant_edges(
        self,
        graph_id: str,
        highlighted: Sequence[TopicSearchResult],
        max_edges: Optional[int] = None,
    ) -> List[TopicEdge]:
        """Edges with both endpoints highlighted, strongest first."""
        if max_edges is None:
            max_edges = self.settings(graph_id).search.max_edges_in_results
        ids = {r.topic.id for r in highlighted}
        edges = [e for e in self.store.list_edges(graph_id) if e.src in ids and e.dst in ids]
        edges.sort(key=lambda e: -e.similarity)
        return edges[:max_edges]

    def items_for_topics(self, graph_id: str, topic_ids: Sequence[str]) -> List[Item]:
        return self.store.items_for_topics(graph_id, list(topic_ids))

    def search(self, graph_id: str, query, options: Optional[SearchOptions] = None) -> SearchResult:
        """
        Full search: topic and item hits, neighbour expansion, relevant edges
        and the combined item list (direct hits first, then topic-linked).
        """
        options = options or SearchOptions()
        tuning = self.settings(graph_id).search

        topic_results = self.find_similar_topics(
            graph_id,
            query,
            options.topic_count if options.topic_count is not None else tuning.topic_result_count,
            options.topic_threshold if options.topic_threshold is not None else tuning.similarity_threshold,
        )
        item_results = self.find_similar_items(
            graph_id,
            query,
            options.item_count if options.item_count is not None else tuning.item_result_count,
            options.item_threshold if options.item_threshold is not None else tuning.similarity_threshold,
        )

        highlighted = (
            self.expand_with_neighbors(graph_id, topic_results)
            if options.expand_neighbors
            else list(topic_results)
        )
        max_edges = options.max_edges if options.max_edges is not None else tuning.max_edges_in_results
        edges = self.filter_relevant_edges(graph_id, highlighted, max_edges) if highlighted else []

        hits: Dict[str, ItemHit] = {}
        for r in item_results:
            hits[r.item.id] = ItemHit(r.item, r.similarity)
        if topic_results:
            for item in self.items_for_topics(graph_id, [r.topic.id for r in topic_results]):
                hits.setdefault(item.id, ItemHit(item, None))

        logger.debug(
            f"Search in graph {graph_id}: {len(topic_results)} topics, "
            f"{len(item_results)} items, {len(edges)} edges"
        )
        return SearchResult(
            highlighted_topics=highlighted,
            edges=edges,
            items=list(hits.values()),
            topic_results=topic_results,
            item_results=item_results,
        )


__all__ = [
    "TopicSearchResult",
    "ItemSearchResult",
    "ItemHit",
    "SearchOptions",
    "SearchResult",
    "SearchEngine",
]
