"""
Background Work
===============
Fire-and-forget tasks for the expensive, deferrable parts of the system:
position projection and clustering.

Failures are logged and counted, never propagated to whoever scheduled the
work. ``drain()`` waits for everything outstanding (tests, shutdown).
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Callable, Coroutine, Dict, List, Optional, Set

from loguru import logger

from ._utils import log_task_exception, run_in_thread
from .cluster_engine import ClusterEngine, ClusterWithEdges
from .config import TopicGraphConfig, get_config
from .graph_store import GraphStore
from .models import OwnerType
from .position_projector import PositionProjector, ReducerFactory
from .settings import GraphSettings, default_settings, merge_stored


class BackgroundTasks:
    """Registry of running asyncio tasks with strong references."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self.failures: List[str] = []

    def schedule(self, name: str, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug(f"Scheduled background task {name}")
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        log_task_exception(task)
        if not task.cancelled() and task.exception() is not None:
            self.failures.append(task.get_name())

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until no task is outstanding, including ones scheduled meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()


def _settings_loader(store: GraphStore, config: TopicGraphConfig) -> Callable[[str], GraphSettings]:
    def load(graph_id: str) -> GraphSettings:
        return merge_stored(store.load_settings(graph_id), default_settings(config))
    return load


class PositionService:
    """Recomputes 3D positions of all topics of a graph."""

    def __init__(
        self,
        store: GraphStore,
        tasks: BackgroundTasks,
        config: Optional[TopicGraphConfig] = None,
        reducer_factory: Optional[ReducerFactory] = None,
    ):
        self.store = store
        self.tasks = tasks
        self.config = config or get_config()
        self.reducer_factory = reducer_factory
        self._load_settings = _settings_loader(store, self.config)
        self._dirty: Set[str] = set()
        self._running: Dict[str, asyncio.Task] = {}

    def projector_for(self, graph_id: str) -> PositionProjector:
        tuning = self._load_settings(graph_id).graph
        projection = replace(
            self.config.projection,
            min_dist=tuning.umap_min_dist,
            spread=tuning.umap_spread,
        )
        return PositionProjector(projection, self.reducer_factory)

    def needs_recompute(self, graph_id: str) -> bool:
        return self.store.count_unpositioned_topics(graph_id) > 0

    async def recompute(self, graph_id: str) -> int:
        """
        Project every topic that has a stored vector and persist the result.

        Returns:
            Number of topics positioned.
        """
        topics = self.store.list_topics(graph_id)
        vectors = self.store.get_vectors(graph_id, OwnerType.TOPIC)
        valid = [t for t in topics if t.id in vectors]
        if not valid:
            return 0

        projector = self.projector_for(graph_id)
        positions = await run_in_thread(projector.project, [vectors[t.id] for t in valid])

        with self.store.transaction() as tx:
            tx.update_positions(
                (t.id, p[0], p[1], p[2]) for t, p in zip(valid, positions)
            )
        logger.info(f"Recomputed positions for {len(valid)} topics (graph={graph_id})")
        return len(valid)

    def schedule_recompute(self, graph_id: str) -> asyncio.Task:
        """
        Request a recompute. Requests arriving while one runs for the same
        graph are folded into a single follow-up run.
        """
        self._dirty.add(graph_id)
        running = self._running.get(graph_id)
        if running is not None and not running.done():
            return running
        task = self.tasks.schedule(f"positions:{graph_id}", self._run_until_clean(graph_id))
        self._running[graph_id] = task
        return task

    async def _run_until_clean(self, graph_id: str) -> None:
        while graph_id in self._dirty:
            self._dirty.discard(graph_id)
            await self.recompute(graph_id)


class ClusterService:
    """Clusters of a graph, computed off the event loop."""

    def __init__(self, store: GraphStore, config: Optional[TopicGraphConfig] = None):
        self.store = store
        self.config = config or get_config()
        self._load_settings = _settings_loader(store, self.config)

    def engine_for(self, graph_id: str) -> ClusterEngine:
        tuning = self._load_settings(graph_id).graph
        return ClusterEngine(
            resolution=tuning.cluster_resolution,
            min_cluster_size=tuning.min_cluster_size,
            seed=self.config.clustering.seed,
        )

    def _compute(self, graph_id: str) -> List[ClusterWithEdges]:
        topics = [t for t in self.store.list_topics(graph_id) if t.has_position]
        edges = self.store.list_edges(graph_id)
        vectors = self.store.get_vectors(graph_id, OwnerType.TOPIC)
        engine = self.engine_for(graph_id)
        clusters = engine.identify_clusters(topics, edges, vectors)
        return engine.compute_clusters_with_edges(clusters, edges)

    async def clusters_with_edges(self, graph_id: str) -> List[ClusterWithEdges]:
        return await run_in_thread(self._compute, graph_id)


__all__ = ["BackgroundTasks", "PositionService", "ClusterService"]
