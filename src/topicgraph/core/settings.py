"""
Per-graph Settings
==================
Tuning knobs a user may change for one graph, persisted as JSON in the
``graph_settings`` table. Defaults come from the process configuration.

``detect_changes`` tells callers what a settings update invalidates:

  - GRAPH:  resolver / edge / clustering parameters changed
  - UMAP:   only the projection parameters changed
  - SEARCH: only search parameters changed
  - NONE:   nothing changed
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .config import TopicGraphConfig, get_config


class GraphTuning(BaseModel):
    model_config = ConfigDict(extra="ignore")

    topic_merge_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    classification_floor: float = Field(default=0.75, ge=0.0, le=1.0)
    edge_min_similarity: float = Field(default=0.6, ge=0.0, le=1.0)
    max_edges_per_node: int = Field(default=5, ge=1)
    max_new_parents: int = Field(default=2, ge=0)
    max_new_children: int = Field(default=2, ge=0)
    max_new_siblings: int = Field(default=3, ge=0)
    cluster_resolution: float = Field(default=1.0, gt=0.0)
    min_cluster_size: int = Field(default=2, ge=1)
    umap_min_dist: float = Field(default=0.4, ge=0.0)
    umap_spread: float = Field(default=2.0, gt=0.0)

    @model_validator(mode="after")
    def check_umap(self) -> "GraphTuning":
        if self.umap_min_dist > self.umap_spread:
            raise ValueError("umap_min_dist must not exceed umap_spread")
        return self


class SearchTuning(BaseModel):
    model_config = ConfigDict(extra="ignore")

    topic_result_count: int = Field(default=5, ge=1)
    item_result_count: int = Field(default=10, ge=1)
    similarity_threshold: float = Field(default=0.4, ge=-1.0, le=1.0)
    max_edges_in_results: int = Field(default=20, ge=0)


class GraphSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    graph: GraphTuning = Field(default_factory=GraphTuning)
    search: SearchTuning = Field(default_factory=SearchTuning)


class SettingsChange(str, Enum):
    GRAPH = "graph"
    UMAP = "umap"
    SEARCH = "search"
    NONE = "none"

    @property
    def needs_recompute(self) -> bool:
        return self in (SettingsChange.GRAPH, SettingsChange.UMAP)


_GRAPH_FIELDS = (
    "topic_merge_threshold",
    "classification_floor",
    "edge_min_similarity",
    "max_edges_per_node",
    "max_new_parents",
    "max_new_children",
    "max_new_siblings",
    "cluster_resolution",
    "min_cluster_size",
)
_UMAP_FIELDS = ("umap_min_dist", "umap_spread")


def default_settings(config: Optional[TopicGraphConfig] = None) -> GraphSettings:
    """Settings seeded from the process configuration."""
    config = config or get_config()
    return GraphSettings(
        graph=GraphTuning(
            topic_merge_threshold=config.resolver.merge_threshold,
            classification_floor=config.edges.classification_floor,
            edge_min_similarity=config.edges.min_similarity,
            max_edges_per_node=config.edges.max_edges_per_node,
            max_new_parents=config.edges.max_new_parents,
            max_new_children=config.edges.max_new_children,
            max_new_siblings=config.edges.max_new_siblings,
            cluster_resolution=config.clustering.resolution,
            min_cluster_size=config.clustering.min_cluster_size,
            umap_min_dist=config.projection.min_dist,
            umap_spread=config.projection.spread,
        ),
        search=SearchTuning(
            topic_result_count=config.search.topic_result_count,
            item_result_count=config.search.item_result_count,
            similarity_threshold=config.search.similarity_threshold,
            max_edges_in_results=config.search.max_edges_in_results,
        ),
    )


def merge_stored(stored: Optional[Dict[str, Any]], defaults: GraphSettings) -> GraphSettings:
    """Overlay stored (possibly partial) settings on the defaults."""
    if not stored:
        return defaults
    data = defaults.model_dump()
    for section in ("graph", "search"):
        data[section].update(stored.get(section) or {})
    return GraphSettings.model_validate(data)


def detect_changes(old: GraphSettings, new: GraphSettings) -> SettingsChange:
    """Classify the most significant change between two settings."""
    if any(getattr(old.graph, f) != getattr(new.graph, f) for f in _GRAPH_FIELDS):
        return SettingsChange.GRAPH
    if any(getattr(old.graph, f) != getattr(new.graph, f) for f in _UMAP_FIELDS):
        return SettingsChange.UMAP
    if old.search != new.search:
        return SettingsChange.SEARCH
    return SettingsChange.NONE


__all__ = [
    "GraphTuning",
    "SearchTuning",
    "GraphSettings",
    "SettingsChange",
    "default_settings",
    "merge_stored",
    "detect_changes",
]
