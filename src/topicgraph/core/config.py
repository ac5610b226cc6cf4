"""
TopicGraph Configuration System
===============================
Centralized, validated configuration with environment variable overrides.

Priority: ENV (TOPICGRAPH_<KEY>) > YAML (``topicgraph:`` section) > defaults.
These values are the process-wide defaults; per-graph tuning lives in
``topicgraph.core.settings`` and is seeded from here.
"""

import os
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field

import yaml

from topicgraph.core.exceptions import ConfigurationError


@dataclass(frozen=True)
class StorageConfig:
    db_path: str = "./data/topicgraph.sqlite"
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class ObservabilityConfig:
    log_level: str = "INFO"
    json_logs: bool = False


@dataclass(frozen=True)
class ResolverConfig:
    merge_threshold: float = 0.85


@dataclass(frozen=True)
class EdgeConfig:
    """Typed-edge construction and degree caps."""
    candidate_pool: int = 20
    classify_top_k: int = 6
    classification_floor: float = 0.75
    max_new_parents: int = 2
    max_new_children: int = 2
    max_new_siblings: int = 3
    max_parents: int = 2
    max_children: int = 30
    max_related: int = 40
    # Similarity-threshold fallback policy
    min_similarity: float = 0.6
    max_edges_per_node: int = 5


@dataclass(frozen=True)
class ClusteringConfig:
    resolution: float = 1.0
    min_cluster_size: int = 2
    seed: int = 42


@dataclass(frozen=True)
class ProjectionConfig:
    pca_components: int = 100
    max_neighbors: int = 15
    min_dist: float = 0.4
    spread: float = 2.0
    half_range: float = 10.0
    random_state: int = 42
    power_iterations: int = 100
    tolerance: float = 1e-6


@dataclass(frozen=True)
class SearchConfig:
    topic_result_count: int = 5
    item_result_count: int = 10
    similarity_threshold: float = 0.4
    max_edges_in_results: int = 20


@dataclass(frozen=True)
class TopicGraphConfig:
    """Root configuration for TopicGraph."""

    version: str = "1.0"
    default_graph_id: str = "default"
    default_graph_name: str = "Default"
    storage: StorageConfig = field(default_factory=StorageConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    edges: EdgeConfig = field(default_factory=EdgeConfig)
    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    projection: ProjectionConfig = field(default_factory=ProjectionConfig)
    search: SearchConfig = field(default_factory=SearchConfig)


def _env_override(key: str, default):
    """Check for TOPICGRAPH_<KEY> environment variable override."""
    env_key = f"TOPICGRAPH_{key.upper()}"
    val = os.environ.get(env_key)
    if val is None:
        return default
    # Type coercion based on the default's type
    if isinstance(default, bool):
        return val.lower() in ("true", "1", "yes")
    if isinstance(default, int):
        return int(val)
    if isinstance(default, float):
        return float(val)
    return val


def _check_unit_interval(key: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(
            config_key=key,
            reason=f"must be within [0, 1], got {value}",
        )


def _check_positive(key: str, value) -> None:
    if value <= 0:
        raise ConfigurationError(
            config_key=key,
            reason=f"must be positive, got {value}",
        )


def validate_config(config: TopicGraphConfig) -> TopicGraphConfig:
    """
    Validate value ranges of a configuration.

    Raises:
        ConfigurationError: On the first out-of-range value.
    """
    _check_unit_interval("resolver.merge_threshold", config.resolver.merge_threshold)
    _check_unit_interval("edges.classification_floor", config.edges.classification_floor)
    _check_unit_interval("edges.min_similarity", config.edges.min_similarity)
    _check_unit_interval("search.similarity_threshold", config.search.similarity_threshold)

    for key, value in (
        ("edges.candidate_pool", config.edges.candidate_pool),
        ("edges.classify_top_k", config.edges.classify_top_k),
        ("edges.max_parents", config.edges.max_parents),
        ("edges.max_children", config.edges.max_children),
        ("edges.max_related", config.edges.max_related),
        ("edges.max_edges_per_node", config.edges.max_edges_per_node),
        ("clustering.resolution", config.clustering.resolution),
        ("clustering.min_cluster_size", config.clustering.min_cluster_size),
        ("projection.pca_components", config.projection.pca_components),
        ("projection.max_neighbors", config.projection.max_neighbors),
        ("projection.spread", config.projection.spread),
        ("projection.half_range", config.projection.half_range),
        ("search.topic_result_count", config.search.topic_result_count),
        ("search.item_result_count", config.search.item_result_count),
    ):
        _check_positive(key, value)

    if config.edges.classify_top_k > config.edges.candidate_pool:
        raise ConfigurationError(
            config_key="edges.classify_top_k",
            reason=(
                f"cannot exceed edges.candidate_pool "
                f"({config.edges.classify_top_k} > {config.edges.candidate_pool})"
            ),
        )
    if config.projection.min_dist > config.projection.spread:
        raise ConfigurationError(
            config_key="projection.min_dist",
            reason="must not exceed projection.spread",
        )
    return config


def load_config(path: Optional[Path] = None) -> TopicGraphConfig:
    """
    Load configuration from YAML file with environment variable overrides.

    Args:
        path: Path to config.yaml. If None, searches ./config.yaml and the
            repository root.

    Returns:
        Validated TopicGraphConfig instance.

    Raises:
        ConfigurationError: If a value is out of range.
    """
    if path is None:
        candidates = [
            Path("config.yaml"),
            Path(__file__).parent.parent.parent.parent / "config.yaml",
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    raw = {}
    if path is not None and path.exists():
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
            raw = loaded.get("topicgraph") or {}

    storage_raw = raw.get("storage") or {}
    storage = StorageConfig(
        db_path=_env_override("DB_PATH", storage_raw.get("db_path", "./data/topicgraph.sqlite")),
        timeout_seconds=_env_override("DB_TIMEOUT_SECONDS", float(storage_raw.get("timeout_seconds", 30.0))),
    )

    obs_raw = raw.get("observability") or {}
    observability = ObservabilityConfig(
        log_level=_env_override("LOG_LEVEL", obs_raw.get("log_level", "INFO")),
        json_logs=_env_override("JSON_LOGS", obs_raw.get("json_logs", False)),
    )

    res_raw = raw.get("resolver") or {}
    resolver = ResolverConfig(
        merge_threshold=_env_override("MERGE_THRESHOLD", float(res_raw.get("merge_threshold", 0.85))),
    )

    edge_raw = raw.get("edges") or {}
    edges = EdgeConfig(
        candidate_pool=_env_override("EDGES_CANDIDATE_POOL", edge_raw.get("candidate_pool", 20)),
        classify_top_k=_env_override("EDGES_CLASSIFY_TOP_K", edge_raw.get("classify_top_k", 6)),
        classification_floor=_env_override(
            "EDGES_CLASSIFICATION_FLOOR", float(edge_raw.get("classification_floor", 0.75))
        ),
        max_new_parents=edge_raw.get("max_new_parents", 2),
        max_new_children=edge_raw.get("max_new_children", 2),
        max_new_siblings=edge_raw.get("max_new_siblings", 3),
        max_parents=_env_override("EDGES_MAX_PARENTS", edge_raw.get("max_parents", 2)),
        max_children=_env_override("EDGES_MAX_CHILDREN", edge_raw.get("max_children", 30)),
        max_related=_env_override("EDGES_MAX_RELATED", edge_raw.get("max_related", 40)),
        min_similarity=_env_override("EDGES_MIN_SIMILARITY", float(edge_raw.get("min_similarity", 0.6))),
        max_edges_per_node=_env_override("EDGES_MAX_EDGES_PER_NODE", edge_raw.get("max_edges_per_node", 5)),
    )

    clu_raw = raw.get("clustering") or {}
    clustering = ClusteringConfig(
        resolution=_env_override("CLUSTERING_RESOLUTION", float(clu_raw.get("resolution", 1.0))),
        min_cluster_size=_env_override("CLUSTERING_MIN_CLUSTER_SIZE", clu_raw.get("min_cluster_size", 2)),
        seed=clu_raw.get("seed", 42),
    )

    proj_raw = raw.get("projection") or {}
    projection = ProjectionConfig(
        pca_components=_env_override("PROJECTION_PCA_COMPONENTS", proj_raw.get("pca_components", 100)),
        max_neighbors=_env_override("PROJECTION_MAX_NEIGHBORS", proj_raw.get("max_neighbors", 15)),
        min_dist=_env_override("PROJECTION_MIN_DIST", float(proj_raw.get("min_dist", 0.4))),
        spread=_env_override("PROJECTION_SPREAD", float(proj_raw.get("spread", 2.0))),
        half_range=_env_override("PROJECTION_HALF_RANGE", float(proj_raw.get("half_range", 10.0))),
        random_state=proj_raw.get("random_state", 42),
        power_iterations=proj_raw.get("power_iterations", 100),
        tolerance=float(proj_raw.get("tolerance", 1e-6)),
    )

    search_raw = raw.get("search") or {}
    search = SearchConfig(
        topic_result_count=_env_override("SEARCH_TOPIC_RESULT_COUNT", search_raw.get("topic_result_count", 5)),
        item_result_count=_env_override("SEARCH_ITEM_RESULT_COUNT", search_raw.get("item_result_count", 10)),
        similarity_threshold=_env_override(
            "SEARCH_SIMILARITY_THRESHOLD", float(search_raw.get("similarity_threshold", 0.4))
        ),
        max_edges_in_results=_env_override(
            "SEARCH_MAX_EDGES_IN_RESULTS", search_raw.get("max_edges_in_results", 20)
        ),
    )

    return validate_config(
        TopicGraphConfig(
            version=raw.get("version", "1.0"),
            default_graph_id=raw.get("default_graph_id", "default"),
            default_graph_name=raw.get("default_graph_name", "Default"),
            storage=storage,
            observability=observability,
            resolver=resolver,
            edges=edges,
            clustering=clustering,
            projection=projection,
            search=search,
        )
    )


# Module-level singleton (lazy-loaded)
_CONFIG: Optional[TopicGraphConfig] = None


def get_config() -> TopicGraphConfig:
    """Get or initialize the global config singleton."""
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config()
    return _CONFIG


def reset_config():
    """Reset the global config singleton (useful for testing)."""
    global _CONFIG
    _CONFIG = None
