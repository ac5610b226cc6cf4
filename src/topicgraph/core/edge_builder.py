"""
Edge Builder
============
Connects newly minted topics to the rest of the graph with typed edges.

For each new topic (in mint order):

  1. Rank every other topic by cosine similarity; keep the top
     ``candidate_pool`` and send the top ``classify_top_k`` of those to the
     relationship classifier.
  2. Apply the classifier's verdicts in order:
       PARENT  -> broader_than(candidate -> new), rejected if it closes a cycle
       CHILD   -> broader_than(new -> candidate), rejected if it closes a cycle
       SIBLING -> related_to in canonical order, skipped if the pair is
                  already connected by any edge
     Every typed relation requires similarity >= ``classification_floor``.
  3. Enforce the degree caps on the new topic and every neighbour it was
     connected to, deleting the lowest-similarity excess edges.

The broader_than subgraph is kept acyclic with an explicit BFS reachability
query over ``EdgeIndex``, an arena of topic slots and index-based edge lists.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set

import numpy as np
from loguru import logger

from .config import EdgeConfig
from .models import EdgeType, Topic, TopicEdge
from .topic_resolver import CreatedTopic
from .vector_math import as_matrix, similarity_batch
from ..llm.relationship_classifier import (
    Relation,
    RelationshipClassifier,
    SimilarityThresholdClassifier,
)


# =============================================================================
# Edge Index (arena)
# =============================================================================

class EdgeIndex:
    """
    In-memory adjacency over a graph's edges.

    Topics are mapped to integer slots; edges live in a flat list and each
    slot keeps the indices of its outgoing and incoming edges. Removed edges
    are tombstoned (``None``) so indices stay stable.
    """

    def __init__(self, edges: Iterable[TopicEdge] = ()):
        self._slots: Dict[str, int] = {}
        self._ids: List[str] = []
        self._edges: List[Optional[TopicEdge]] = []
        self._out: List[List[int]] = []
        self._in: List[List[int]] = []
        self._by_key: Dict[tuple, int] = {}
        for edge in edges:
            self.add(edge)

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, topic_id: str) -> bool:
        return topic_id in self._slots

    def slot(self, topic_id: str) -> int:
        idx = self._slots.get(topic_id)
        if idx is None:
            idx = len(self._ids)
            self._slots[topic_id] = idx
            self._ids.append(topic_id)
            self._out.append([])
            self._in.append([])
        return idx

    def edges(self) -> List[TopicEdge]:
        """Live edges in insertion order."""
        return [e for e in self._edges if e is not None]

    def add(self, edge: TopicEdge) -> bool:
        """Insert an edge; returns False if an identical edge already exists."""
        if edge.key in self._by_key:
            return False
        src = self.slot(edge.src)
        dst = self.slot(edge.dst)
        idx = len(self._edges)
        self._edges.append(edge)
        self._out[src].append(idx)
        self._in[dst].append(idx)
        self._by_key[edge.key] = idx
        return True

    def remove(self, edge: TopicEdge) -> bool:
        idx = self._by_key.pop(edge.key, None)
        if idx is None:
            return False
        src = self._slots[edge.src]
        dst = self._slots[edge.dst]
        self._out[src].remove(idx)
        self._in[dst].remove(idx)
        self._edges[idx] = None
        return True

    def has_edge(self, src: str, dst: str, edge_type: EdgeType) -> bool:
        return (src, dst, edge_type.value) in self._by_key

    def connected(self, a: str, b: str) -> bool:
        """True if any edge, of any type or direction, joins a and b."""
        if a not in self._slots or b not in self._slots:
            return False
        for idx in self._out[self._slots[a]] + self._in[self._slots[a]]:
            if self._edges[idx].other(a) == b:
                return True
        return False

    def _typed(self, indices: List[int], edge_type: EdgeType) -> List[TopicEdge]:
        return [self._edges[i] for i in indices if self._edges[i].type == edge_type]

    def parent_edges(self, topic_id: str) -> List[TopicEdge]:
        """broader_than edges pointing at the topic (its parents)."""
        if topic_id not in self._slots:
            return []
        return self._typed(self._in[self._slots[topic_id]], EdgeType.BROADER_THAN)

    def child_edges(self, topic_id: str) -> List[TopicEdge]:
        if topic_id not in self._slots:
            return []
        return self._typed(self._out[self._slots[topic_id]], EdgeType.BROADER_THAN)

    def related_edges(self, topic_id: str) -> List[TopicEdge]:
        if topic_id not in self._slots:
            return []
        slot = self._slots[topic_id]
        return self._typed(self._out[slot] + self._in[slot], EdgeType.RELATED_TO)

    def is_reachable(self, src: str, dst: str) -> bool:
        """BFS along broader_than edges: can ``dst`` be reached from ``src``?"""
        if src == dst:
            return True
        if src not in self._slots or dst not in self._slots:
            return False
        target = self._slots[dst]
        seen = [False] * len(self._ids)
        start = self._slots[src]
        seen[start] = True
        queue = deque([start])
        while queue:
            node = queue.popleft()
            for idx in self._out[node]:
                edge = self._edges[idx]
                if edge.type != EdgeType.BROADER_THAN:
                    continue
                nxt = self._slots[edge.dst]
                if nxt == target:
                    return True
                if not seen[nxt]:
                    seen[nxt] = True
                    queue.append(nxt)
        return False

    def has_broader_cycle(self) -> bool:
        """Kahn's algorithm over broader_than; used by consistency checks."""
        n = len(self._ids)
        indegree = [0] * n
        for edge in self.edges():
            if edge.type == EdgeType.BROADER_THAN:
                indegree[self._slots[edge.dst]] += 1
        queue = deque(i for i in range(n) if indegree[i] == 0)
        visited = 0
        while queue:
            node = queue.popleft()
            visited += 1
            for idx in self._out[node]:
                edge = self._edges[idx]
                if edge.type != EdgeType.BROADER_THAN:
                    continue
                nxt = self._slots[edge.dst]
                indegree[nxt] -= 1
                if indegree[nxt] == 0:
                    queue.append(nxt)
        return visited != n


# =============================================================================
# Results
# =============================================================================

@dataclass
class Neighbor:
    topic: Topic
    similarity: float


@dataclass
class EdgeDelta:
    """
    Net edge changes of one build.

    ``added`` never contains an edge that was pruned again in the same build;
    ``removed`` only contains edges that existed before it.
    """

    added: List[TopicEdge] = field(default_factory=list)
    removed: List[TopicEdge] = field(default_factory=list)
    rejected_cycles: int = 0
    classifier_degraded: int = 0

    def merge(self, other: "EdgeDelta") -> None:
        added_ids = {e.id for e in self.added}
        for edge in other.removed:
            if edge.id in added_ids:
                self.added = [e for e in self.added if e.id != edge.id]
                added_ids.discard(edge.id)
            else:
                self.removed.append(edge)
        self.added.extend(other.added)
        self.rejected_cycles += other.rejected_cycles
        self.classifier_degraded += other.classifier_degraded


# =============================================================================
# Builder
# =============================================================================

class EdgeBuilder:
    """Builds typed edges for new topics through a relationship classifier."""

    def __init__(self, classifier: RelationshipClassifier, config: Optional[EdgeConfig] = None):
        self.classifier = classifier
        self.config = config or EdgeConfig()

    @classmethod
    def similarity_fallback(cls, config: Optional[EdgeConfig] = None) -> "EdgeBuilder":
        """
        Builder for environments without a language model.

        Only related_to edges are produced: up to ``max_edges_per_node``
        neighbours with similarity >= ``min_similarity``.
        """
        config = config or EdgeConfig()
        classifier = SimilarityThresholdClassifier(config.min_similarity, config.max_edges_per_node)
        tuned = EdgeConfig(
            candidate_pool=max(config.candidate_pool, config.max_edges_per_node),
            classify_top_k=max(config.candidate_pool, config.max_edges_per_node),
            classification_floor=config.min_similarity,
            max_new_parents=0,
            max_new_children=0,
            max_new_siblings=config.max_edges_per_node,
            max_parents=config.max_parents,
            max_children=config.max_children,
            max_related=config.max_related,
            min_similarity=config.min_similarity,
            max_edges_per_node=config.max_edges_per_node,
        )
        return cls(classifier, tuned)

    # ---- Candidate ranking ----------------------------------------------

    def rank_neighbors(
        self,
        topic: Topic,
        embedding,
        candidates: Sequence[Topic],
        embeddings: Dict[str, np.ndarray],
    ) -> List[Neighbor]:
        """Other topics with a stored vector, most similar first (stable on ties)."""
        others = [t for t in candidates if t.id != topic.id and t.id in embeddings]
        if not others:
            return []
        scores = similarity_batch(embedding, as_matrix([embeddings[t.id] for t in others]))
        order = np.argsort(-scores, kind="stable")
        pool = order[: self.config.candidate_pool]
        return [Neighbor(others[i], float(scores[i])) for i in pool]

    # ---- Single topic ----------------------------------------------------

    async def build_for_topic(
        self,
        graph_id: str,
        topic: Topic,
        embedding,
        candidates: Sequence[Topic],
        embeddings: Dict[str, np.ndarray],
        index: EdgeIndex,
    ) -> EdgeDelta:
        """
        Classify and connect one new topic. ``index`` is updated in place.

        Args:
            graph_id: Graph of the topic.
            topic: The newly minted topic.
            embedding: Its embedding.
            candidates: Topics it may connect to (the topic itself is ignored).
            embeddings: topic id -> embedding for the candidates.
            index: Current edges of the graph.
        """
        delta = EdgeDelta()
        index.slot(topic.id)

        pool = self.rank_neighbors(topic, embedding, candidates, embeddings)
        shortlist = pool[: self.config.classify_top_k]
        if not shortlist:
            return delta

        relations = await self._classify(topic, shortlist)
        if relations is None:
            delta.classifier_degraded += 1
            return delta

        counts = {Relation.PARENT: 0, Relation.CHILD: 0, Relation.SIBLING: 0}
        limits = {
            Relation.PARENT: self.config.max_new_parents,
            Relation.CHILD: self.config.max_new_children,
            Relation.SIBLING: self.config.max_new_siblings,
        }
        touched: List[str] = []

        for neighbor, relation in zip(shortlist, relations):
            if relation == Relation.UNRELATED:
                continue
            if neighbor.similarity < self.config.classification_floor:
                continue
            if counts[relation] >= limits[relation]:
                continue

            other = neighbor.topic.id
            edge: Optional[TopicEdge] = None
            if relation == Relation.PARENT:
                if index.is_reachable(topic.id, other):
                    logger.debug(
                        f"Rejected broader_than '{neighbor.topic.label}' -> '{topic.label}': cycle"
                    )
                    delta.rejected_cycles += 1
                    continue
                if not index.has_edge(other, topic.id, EdgeType.BROADER_THAN):
                    edge = TopicEdge.broader_than(graph_id, other, topic.id, neighbor.similarity)
            elif relation == Relation.CHILD:
                if index.is_reachable(other, topic.id):
                    logger.debug(
                        f"Rejected broader_than '{topic.label}' -> '{neighbor.topic.label}': cycle"
                    )
                    delta.rejected_cycles += 1
                    continue
                if not index.has_edge(topic.id, other, EdgeType.BROADER_THAN):
                    edge = TopicEdge.broader_than(graph_id, topic.id, other, neighbor.similarity)
            else:
                if not index.connected(topic.id, other):
                    edge = TopicEdge.related_to(graph_id, topic.id, other, neighbor.similarity)

            if edge is None:
                continue
            index.add(edge)
            delta.added.append(edge)
            counts[relation] += 1
            touched.append(other)

        for node in [topic.id] + touched:
            for pruned in self._enforce_caps(node, index):
                if any(e.id == pruned.id for e in delta.added):
                    delta.added = [e for e in delta.added if e.id != pruned.id]
                else:
                    delta.removed.append(pruned)

        if delta.added or delta.removed:
            logger.debug(
                f"Edges for '{topic.label}': +{len(delta.added)} -{len(delta.removed)} "
                f"(graph={graph_id})"
            )
        return delta

    async def _classify(self, topic: Topic, shortlist: List[Neighbor]) -> Optional[List[Relation]]:
        labels = [n.topic.label for n in shortlist]
        scores = [n.similarity for n in shortlist]
        try:
            relations = await self.classifier.classify(topic.label, labels, scores)
        except Exception as exc:
            logger.warning(f"Relationship classification failed for '{topic.label}': {exc}")
            return None

        if not isinstance(relations, list) or len(relations) != len(shortlist):
            logger.warning(
                f"Relationship classifier returned no usable answer for '{topic.label}' "
                f"(expected {len(shortlist)} labels)"
            )
            return None
        try:
            return [Relation(r) for r in relations]
        except ValueError as exc:
            logger.warning(f"Relationship classifier returned an unknown label: {exc}")
            return None

    def _enforce_caps(self, topic_id: str, index: EdgeIndex) -> List[TopicEdge]:
        removed: List[TopicEdge] = []
        for edges, cap in (
            (index.parent_edges(topic_id), self.config.max_parents),
            (index.child_edges(topic_id), self.config.max_children),
            (index.related_edges(topic_id), self.config.max_related),
        ):
            if len(edges) <= cap:
                continue
            # Stable sort keeps older edges on equal similarity
            ranked = sorted(edges, key=lambda e: -e.similarity)
            for edge in ranked[cap:]:
                index.remove(edge)
                removed.append(edge)
                logger.debug(
                    f"Pruned {edge.type.value} {edge.src} -> {edge.dst} "
                    f"(similarity={edge.similarity:.3f}, cap={cap})"
                )
        return removed

    # ---- Batch -------------------------------------------------------------

    async def build_for_new_topics(
        self,
        graph_id: str,
        created: Sequence[CreatedTopic],
        existing_topics: Sequence[Topic],
        existing_embeddings: Dict[str, np.ndarray],
        index: EdgeIndex,
    ) -> EdgeDelta:
        """
        Connect every newly minted topic, in mint order.

        A later new topic sees the earlier ones as candidates; an earlier one
        does not see later ones.
        """
        delta = EdgeDelta()
        candidates: List[Topic] = list(existing_topics)
        embeddings: Dict[str, np.ndarray] = dict(existing_embeddings)
        seen: Set[str] = {t.id for t in candidates}

        for item in created:
            step = await self.build_for_topic(
                graph_id, item.topic, item.embedding, candidates, embeddings, index
            )
            delta.merge(step)
            if item.topic.id not in seen:
                candidates.append(item.topic)
                seen.add(item.topic.id)
            embeddings[item.topic.id] = item.embedding
        return delta


__all__ = [
    "EdgeIndex",
    "Neighbor",
    "EdgeDelta",
    "EdgeBuilder",
]
