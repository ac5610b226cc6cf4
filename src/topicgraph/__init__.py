"""
TopicGraph - Incremental Semantic Topic Knowledge Graph
=======================================================

Builds a knowledge graph of topics from ingested content. Each page arrives
with topic labels and their embeddings; labels are merged into existing
topics by similarity, new topics are attached with typed edges
(broader_than / related_to), positioned in 3D and grouped into clusters.

Main Packages:
    - core: vector math, topic resolution, edges, clustering, projection,
      search, storage, ingestion and graph management
    - llm: relationship classifier adapters

Quick Start:
    from topicgraph.core import GraphManager

    manager = GraphManager()
    graph = manager.initialize()
    result = await manager.ingestion.ingest(graph.id, page)
    hits = manager.search.search(graph.id, query_embedding)

Version: 1.0.0
"""

__version__ = "1.0.0"

# core must be initialised before llm: the classifier adapters raise core exceptions
from .core import GraphManager, PageResult, TopicGraphError, get_config
from .llm import LLMRelationshipClassifier, Relation, SimilarityThresholdClassifier

__all__ = [
    "__version__",
    "GraphManager",
    "PageResult",
    "TopicGraphError",
    "get_config",
    "LLMRelationshipClassifier",
    "Relation",
    "SimilarityThresholdClassifier",
]
