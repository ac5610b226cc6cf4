"""
Ingestion Pipeline
==================
Turns one extracted page into graph state:

    validate -> duplicate check -> snapshot -> resolve topics
             -> build edges -> one write transaction -> schedule positions

The snapshot is read before the classifier is consulted, so two concurrent
ingestions may both mint a near-duplicate label; the UNIQUE(graph_id, label)
constraint then fails the later transaction, which is rolled back whole.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Union

import pydantic
from loguru import logger

from .background import PositionService
from .config import TopicGraphConfig, get_config
from .edge_builder import EdgeBuilder, EdgeDelta, EdgeIndex
from .exceptions import DimensionMismatchError, GraphNotFoundError, ValidationError
from .graph_store import GraphStore
from .models import EdgeType, Item, OwnerType, Topic, TopicEdge, new_id
from .schemas import PageResult
from .settings import GraphSettings, default_settings, merge_stored
from .topic_resolver import TopicResolver
from ..llm.relationship_classifier import RelationshipClassifier


@dataclass
class IngestionResult:
    """Outcome of one ``ingest`` call."""

    item: Optional[Item] = None
    skipped: bool = False
    reason: Optional[str] = None
    topic_ids: List[str] = field(default_factory=list)
    created_topics: List[Topic] = field(default_factory=list)
    reused_topics: List[Topic] = field(default_factory=list)
    edges_added: List[TopicEdge] = field(default_factory=list)
    edges_removed: List[TopicEdge] = field(default_factory=list)
    rejected_cycles: int = 0
    recompute_scheduled: bool = False

    @classmethod
    def duplicate(cls, link: str) -> "IngestionResult":
        return cls(skipped=True, reason=f"duplicate link: {link}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item": self.item.to_dict() if self.item else None,
            "skipped": self.skipped,
            "reason": self.reason,
            "topic_ids": list(self.topic_ids),
            "created_topics": [t.to_dict() for t in self.created_topics],
            "reused_topics": [t.to_dict() for t in self.reused_topics],
            "edges_added": [e.to_dict() for e in self.edges_added],
            "edges_removed": [e.to_dict() for e in self.edges_removed],
            "rejected_cycles": self.rejected_cycles,
            "recompute_scheduled": self.recompute_scheduled,
        }


class IngestionPipeline:
    """
    Ingests pages into a graph.

    Args:
        store: Persistence.
        classifier: Relationship oracle for typed edges. Without one, the
            similarity-threshold policy builds related_to edges only.
        positions: Schedules position recomputes; optional for callers that
            project on their own.
        config: Process configuration (defaults to the global one).
    """

    def __init__(
        self,
        store: GraphStore,
        classifier: Optional[RelationshipClassifier] = None,
        positions: Optional[PositionService] = None,
        config: Optional[TopicGraphConfig] = None,
    ):
        self.store = store
        self.classifier = classifier
        self.positions = positions
        self.config = config or get_config()

    def settings(self, graph_id: str) -> GraphSettings:
        return merge_stored(self.store.load_settings(graph_id), default_settings(self.config))

    def edge_builder(self, settings: GraphSettings) -> EdgeBuilder:
        tuning = settings.graph
        edge_config = replace(
            self.config.edges,
            classification_floor=tuning.classification_floor,
            max_new_parents=tuning.max_new_parents,
            max_new_children=tuning.max_new_children,
            max_new_siblings=tuning.max_new_siblings,
            min_similarity=tuning.edge_min_similarity,
            max_edges_per_node=tuning.max_edges_per_node,
        )
        if self.classifier is None:
            return EdgeBuilder.similarity_fallback(edge_config)
        return EdgeBuilder(self.classifier, edge_config)

    @staticmethod
    def _validate(page: Union[PageResult, Dict[str, Any]]) -> PageResult:
        if isinstance(page, PageResult):
            return page
        try:
            return PageResult.model_validate(page)
        except pydantic.ValidationError as e:
            first = e.errors()[0]
            field_name = ".".join(str(p) for p in first.get("loc", ())) or "page"
            raise ValidationError(field=field_name, reason=first.get("msg", str(e))) from e

    @staticmethod
    def _write_edges(tx, graph_id: str, delta: EdgeDelta) -> List[TopicEdge]:
        """
        Apply an edge delta against the edges committed so far.

        The delta was built from a snapshot; another ingestion may have
        committed broader_than edges since. Each new broader_than edge is
        checked again and left out if it would now close a cycle.

        Returns:
            The edges that were left out.
        """
        for edge in delta.removed:
            tx.delete_edge(edge)
        index = EdgeIndex(tx.list_edges(graph_id))
        skipped: List[TopicEdge] = []
        for edge in delta.added:
            if edge.type == EdgeType.BROADER_THAN and index.is_reachable(edge.dst, edge.src):
                logger.debug(f"Dropping {edge.src} -> {edge.dst}: a concurrent ingestion made it cyclic")
                skipped.append(edge)
                continue
            if index.add(edge):
                tx.insert_edge(edge)
        return skipped

    async def ingest(self, graph_id: str, page: Union[PageResult, Dict[str, Any]]) -> IngestionResult:
        """
        Ingest one page into ``graph_id``.

        Returns:
            IngestionResult; ``skipped=True`` when the link is already known.

        Raises:
            ValidationError: Malformed page.
            DimensionMismatchError: Embeddings don't match the graph's vectors.
            GraphNotFoundError: Unknown graph.
            StorageError: The write transaction failed (nothing was written).
        """
        page = self._validate(page)
        if self.store.get_graph(graph_id) is None:
            raise GraphNotFoundError(graph_id)

        if self.store.item_by_link(graph_id, page.link) is not None:
            logger.debug(f"Skipping known link {page.link} (graph={graph_id})")
            return IngestionResult.duplicate(page.link)

        stored_dim = self.store.vector_dimension(graph_id)
        if stored_dim is not None and stored_dim != page.dimension:
            raise DimensionMismatchError(stored_dim, page.dimension, "ingest")

        settings = self.settings(graph_id)

        # Snapshot
        topics = self.store.list_topics(graph_id)
        topic_vectors = self.store.get_vectors(graph_id, OwnerType.TOPIC)
        index = EdgeIndex(self.store.list_edges(graph_id))

        resolution = TopicResolver(settings.graph.topic_merge_threshold).resolve(
            graph_id, page.topics, page.topic_embeddings, topics, topic_vectors
        )
        delta = await self.edge_builder(settings).build_for_new_topics(
            graph_id, resolution.created, topics, topic_vectors, index
        )

        item = Item(
            id=new_id(),
            graph_id=graph_id,
            title=page.title,
            summary=page.summary,
            link=page.link,
        )

        with self.store.transaction() as tx:
            if tx.link_exists(graph_id, page.link):
                duplicate = True
            else:
                duplicate = False
                tx.insert_item(item)
                if page.content_embedding is not None:
                    tx.put_vector(graph_id, OwnerType.ITEM, item.id, page.content_embedding)
                for created in resolution.created:
                    tx.insert_topic(created.topic)
                    tx.put_vector(graph_id, OwnerType.TOPIC, created.topic.id, created.embedding)
                tx.increment_uses(t.id for t in resolution.reused)
                for topic_id in resolution.topic_ids:
                    tx.link_item_topic(graph_id, item.id, topic_id)
                late_cycles = self._write_edges(tx, graph_id, delta)

        if duplicate:
            logger.debug(f"Link {page.link} was ingested concurrently (graph={graph_id})")
            return IngestionResult.duplicate(page.link)

        if late_cycles:
            delta.added = [e for e in delta.added if e not in late_cycles]
            delta.rejected_cycles += len(late_cycles)

        logger.info(
            f"Ingested '{item.title}' into graph {graph_id}: "
            f"{len(resolution.created)} new topics, {len(resolution.reused)} reused, "
            f"+{len(delta.added)}/-{len(delta.removed)} edges"
        )

        scheduled = False
        if resolution.created and self.positions is not None:
            self.positions.schedule_recompute(graph_id)
            scheduled = True

        return IngestionResult(
            item=item,
            topic_ids=resolution.topic_ids,
            created_topics=[c.topic for c in resolution.created],
            reused_topics=list(resolution.reused),
            edges_added=list(delta.added),
            edges_removed=list(delta.removed),
            rejected_cycles=delta.rejected_cycles,
            recompute_scheduled=scheduled,
        )


__all__ = ["IngestionResult", "IngestionPipeline"]
