"""
TopicGraph Core Module
======================

Vector Operations:
    - vector_math: cosine similarity, normalization, medoid, 3D normalization,
      float32 vector codec

Graph Construction:
    - TopicResolver: merge-or-create of topic labels
    - EdgeBuilder / EdgeIndex: typed, acyclic broader_than and related_to edges
    - IngestionPipeline: one page in, one transaction out

Layout and Grouping:
    - PositionProjector: PCA + UMAP into a bounded 3D cube
    - ClusterEngine: Louvain communities with medoid centroids

Retrieval:
    - SearchEngine: topic / item vector search with graph expansion

Management:
    - GraphStore: SQLite persistence
    - GraphManager: graph lifecycle, settings, deletions, snapshots
    - BackgroundTasks / PositionService / ClusterService: deferred work

Configuration:
    Defaults are loaded from config.yaml via the config module; per-graph
    overrides live in the settings module.

Example:
    from topicgraph.core import GraphManager

    manager = GraphManager()
    graph = manager.initialize()
    await manager.ingestion.ingest(graph.id, page)
"""

from .exceptions import (
    TopicGraphError,
    RecoverableError,
    IrrecoverableError,
    StorageError,
    StorageTimeoutError,
    DataCorruptionError,
    VectorError,
    DimensionMismatchError,
    EmptyDatasetError,
    ConfigurationError,
    ValidationError,
    NotFoundError,
    GraphNotFoundError,
    UnsupportedOperationError,
    ClassifierError,
)
from .config import TopicGraphConfig, get_config, load_config, reset_config
from .logging_config import configure_from_config, configure_logging
from .models import EdgeType, Graph, Item, ItemTopic, OwnerType, Topic, TopicEdge
from .schemas import PageResult
from .topic_resolver import TopicResolver, TopicResolution
from .edge_builder import EdgeBuilder, EdgeDelta, EdgeIndex
from .cluster_engine import ClusterEngine, ClusterInfo, ClusterWithEdges
from .position_projector import PositionProjector
from .search_engine import SearchEngine, SearchOptions, SearchResult
from .graph_store import GraphStore
from .settings import GraphSettings, SettingsChange, detect_changes
from .background import BackgroundTasks, ClusterService, PositionService
from .ingestion import IngestionPipeline, IngestionResult
from .graph_manager import GraphManager, GraphSnapshot

__all__ = [
    "TopicGraphError",
    "RecoverableError",
    "IrrecoverableError",
    "StorageError",
    "StorageTimeoutError",
    "DataCorruptionError",
    "VectorError",
    "DimensionMismatchError",
    "EmptyDatasetError",
    "ConfigurationError",
    "ValidationError",
    "NotFoundError",
    "GraphNotFoundError",
    "UnsupportedOperationError",
    "ClassifierError",
    "TopicGraphConfig",
    "get_config",
    "load_config",
    "reset_config",
    "configure_logging",
    "configure_from_config",
    "EdgeType",
    "Graph",
    "Item",
    "ItemTopic",
    "OwnerType",
    "Topic",
    "TopicEdge",
    "PageResult",
    "TopicResolver",
    "TopicResolution",
    "EdgeBuilder",
    "EdgeDelta",
    "EdgeIndex",
    "ClusterEngine",
    "ClusterInfo",
    "ClusterWithEdges",
    "PositionProjector",
    "SearchEngine",
    "SearchOptions",
    "SearchResult",
    "GraphStore",
    "GraphSettings",
    "SettingsChange",
    "detect_changes",
    "BackgroundTasks",
    "ClusterService",
    "PositionService",
    "IngestionPipeline",
    "IngestionResult",
    "GraphManager",
    "GraphSnapshot",
]
