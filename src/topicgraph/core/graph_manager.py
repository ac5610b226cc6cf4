"""
Graph Manager
=============
Entry point for everything graph-scoped: graph lifecycle, settings,
deletions, statistics, snapshots, and access to ingestion, search and
clustering for a graph id.

The default graph is created by ``initialize()`` and can be reset but never
deleted.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from .background import BackgroundTasks, ClusterService, PositionService
from .config import TopicGraphConfig, get_config
from .exceptions import GraphNotFoundError, UnsupportedOperationError, ValidationError
from .graph_store import GraphStore
from .ingestion import IngestionPipeline
from .models import Graph, Item, Topic, TopicEdge, new_id
from .position_projector import ReducerFactory
from .search_engine import SearchEngine
from .settings import (
    GraphSettings,
    SettingsChange,
    default_settings,
    detect_changes,
    merge_stored,
)
from ..llm.relationship_classifier import RelationshipClassifier


@dataclass
class GraphSnapshot:
    topics: List[Topic] = field(default_factory=list)
    items: List[Item] = field(default_factory=list)
    edges: List[TopicEdge] = field(default_factory=list)
    items_by_topic: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topics": [t.to_dict() for t in self.topics],
            "items": [i.to_dict() for i in self.items],
            "edges": [e.to_dict() for e in self.edges],
            "items_by_topic": {k: list(v) for k, v in self.items_by_topic.items()},
        }


class GraphManager:
    """
    Wires the store, background services, ingestion and search together.

    Args:
        store: Persistence; a store at the configured path is opened if None.
        classifier: Relationship oracle used by ingestion.
        config: Process configuration (defaults to the global one).
        reducer_factory: UMAP replacement for position projection.
    """

    def __init__(
        self,
        store: Optional[GraphStore] = None,
        classifier: Optional[RelationshipClassifier] = None,
        config: Optional[TopicGraphConfig] = None,
        reducer_factory: Optional[ReducerFactory] = None,
    ):
        self.config = config or get_config()
        self.store = store or GraphStore(self.config.storage.db_path, self.config.storage.timeout_seconds)
        self.tasks = BackgroundTasks()
        self.positions = PositionService(self.store, self.tasks, self.config, reducer_factory)
        self.clusters = ClusterService(self.store, self.config)
        self.ingestion = IngestionPipeline(self.store, classifier, self.positions, self.config)
        self.search = SearchEngine(self.store, self.get_settings)

    # ---- Lifecycle ---------------------------------------------------------

    def initialize(self) -> Graph:
        """Ensure the default graph exists and return it."""
        existing = self.store.get_graph(self.config.default_graph_id)
        if existing is not None:
            return existing
        graph = Graph(
            id=self.config.default_graph_id,
            name=self.config.default_graph_name,
            is_default=True,
        )
        with self.store.transaction() as tx:
            tx.insert_graph(graph)
        logger.info(f"Created default graph '{graph.name}' ({graph.id})")
        return graph

    def create_graph(self, name: str) -> Graph:
        name = (name or "").strip()
        if not name:
            raise ValidationError(field="name", reason="Graph name cannot be empty")
        graph = Graph(id=f"graph_{new_id()}", name=name)
        with self.store.transaction() as tx:
            tx.insert_graph(graph)
        logger.info(f"Created graph '{name}' ({graph.id})")
        return graph

    def list_graphs(self) -> List[Graph]:
        return self.store.list_graphs()

    def get_graph(self, graph_id: str) -> Optional[Graph]:
        return self.store.get_graph(graph_id)

    def require_graph(self, graph_id: str) -> Graph:
        graph = self.store.get_graph(graph_id)
        if graph is None:
            raise GraphNotFoundError(graph_id)
        return graph

    def reset_graph(self, graph_id: str) -> None:
        """Remove all content of a graph, keeping the graph and its settings."""
        self.require_graph(graph_id)
        with self.store.transaction() as tx:
            tx.clear_graph(graph_id)
        logger.info(f"Reset graph {graph_id}")

    def delete_graph(self, graph_id: str) -> None:
        graph = self.require_graph(graph_id)
        if graph.is_default or graph_id == self.config.default_graph_id:
            raise UnsupportedOperationError("delete_graph", "the default graph cannot be deleted")
        with self.store.transaction() as tx:
            tx.delete_graph(graph_id)
        logger.info(f"Deleted graph {graph_id}")

    # ---- Settings ----------------------------------------------------------

    def get_settings(self, graph_id: str) -> GraphSettings:
        return merge_stored(self.store.load_settings(graph_id), default_settings(self.config))

    def save_settings(self, graph_id: str, settings: GraphSettings) -> SettingsChange:
        """
        Persist new settings and report what they invalidate. A GRAPH or UMAP
        change schedules a position recompute when an event loop is running.
        """
        self.require_graph(graph_id)
        previous = self.get_settings(graph_id)
        change = detect_changes(previous, settings)
        with self.store.transaction() as tx:
            tx.save_settings(graph_id, settings.model_dump())
        logger.info(f"Saved settings for graph {graph_id} (change={change.value})")
        if change.needs_recompute:
            self._schedule_positions(graph_id)
        return change

    def reset_settings(self, graph_id: str) -> SettingsChange:
        return self.save_settings(graph_id, default_settings(self.config))

    def _schedule_positions(self, graph_id: str) -> bool:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop; position recompute for {graph_id} left to the caller")
            return False
        self.positions.schedule_recompute(graph_id)
        return True

    # ---- Deletion ----------------------------------------------------------

    def delete_topics(self, graph_id: str, topic_ids: Sequence[str]) -> int:
        """Delete topics with their links, edges and vectors."""
        self.require_graph(graph_id)
        deleted = 0
        with self.store.transaction() as tx:
            for topic_id in topic_ids:
                deleted += int(tx.delete_topic(graph_id, topic_id))
        if deleted:
            logger.info(f"Deleted {deleted} topics from graph {graph_id}")
            self._schedule_positions(graph_id)
        return deleted

    def delete_items(self, graph_id: str, item_ids: Sequence[str]) -> int:
        """Delete items; each linked topic loses one use (never below zero)."""
        self.require_graph(graph_id)
        deleted = 0
        with self.store.transaction() as tx:
            for item_id in item_ids:
                deleted += int(tx.delete_item(graph_id, item_id))
        if deleted:
            logger.info(f"Deleted {deleted} items from graph {graph_id}")
        return deleted

    # ---- Read models -------------------------------------------------------

    def graph_stats(self, graph_id: str) -> Dict[str, Any]:
        self.require_graph(graph_id)
        stats = self.store.stats(graph_id)
        stats["graph_id"] = graph_id
        return stats

    def graph_snapshot(self, graph_id: str) -> GraphSnapshot:
        self.require_graph(graph_id)
        items_by_topic: Dict[str, List[str]] = {}
        for item_id, topic_id in self.store.item_topic_links(graph_id):
            items_by_topic.setdefault(topic_id, []).append(item_id)
        return GraphSnapshot(
            topics=self.store.list_topics(graph_id),
            items=self.store.list_items(graph_id),
            edges=self.store.list_edges(graph_id),
            items_by_topic=items_by_topic,
        )

    def items_for_topic(self, graph_id: str, topic_id: str) -> List[Item]:
        """Items linked to a topic, newest first."""
        self.require_graph(graph_id)
        return self.store.items_for_topics(graph_id, [topic_id])

    async def close(self) -> None:
        """Wait for outstanding background work."""
        await self.tasks.drain()


__all__ = ["GraphManager", "GraphSnapshot"]
