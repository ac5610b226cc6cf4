"""
TopicGraph Test Suite - Configuration Tests
"""

import dataclasses

import pytest
import yaml

from topicgraph.core.config import (
    EdgeConfig,
    TopicGraphConfig,
    get_config,
    load_config,
    reset_config,
    validate_config,
)
from topicgraph.core.exceptions import ConfigurationError


@pytest.fixture
def sample_config_path(tmp_path):
    """Create a temporary config.yaml."""
    config_data = {
        "topicgraph": {
            "version": "1.0-test",
            "default_graph_name": "Reading list",
            "storage": {"db_path": str(tmp_path / "data" / "graph.sqlite"), "timeout_seconds": 2.5},
            "observability": {"log_level": "DEBUG"},
            "resolver": {"merge_threshold": 0.9},
            "edges": {
                "candidate_pool": 10,
                "classify_top_k": 4,
                "classification_floor": 0.8,
                "max_parents": 3,
            },
            "clustering": {"resolution": 1.5, "min_cluster_size": 3},
            "projection": {"min_dist": 0.2, "spread": 1.0, "half_range": 5.0},
            "search": {"topic_result_count": 3, "similarity_threshold": 0.5},
        }
    }
    config_path = tmp_path / "config.yaml"
    with open(config_path, "w") as f:
        yaml.dump(config_data, f)
    return config_path


def _write(tmp_path, data):
    path = tmp_path / "custom.yaml"
    with open(path, "w") as f:
        yaml.dump({"topicgraph": data}, f)
    return path


class TestLoadConfig:
    def test_load_from_yaml(self, sample_config_path, monkeypatch):
        monkeypatch.delenv("TOPICGRAPH_DB_PATH", raising=False)
        config = load_config(sample_config_path)
        assert config.version == "1.0-test"
        assert config.default_graph_name == "Reading list"
        assert config.storage.db_path.endswith("graph.sqlite")
        assert config.storage.timeout_seconds == 2.5

    def test_default_values_when_no_file(self, tmp_path):
        config = load_config(tmp_path / "nonexistent.yaml")
        assert config.resolver.merge_threshold == 0.85
        assert config.edges.classify_top_k == 6
        assert config.clustering.min_cluster_size == 2
        assert config.projection.half_range == 10.0
        assert config.default_graph_id == "default"

    def test_edge_config(self, sample_config_path):
        config = load_config(sample_config_path)
        assert config.edges.candidate_pool == 10
        assert config.edges.classify_top_k == 4
        assert config.edges.classification_floor == 0.8
        assert config.edges.max_parents == 3
        # Unspecified keys keep their defaults
        assert config.edges.max_children == 30

    def test_clustering_and_projection(self, sample_config_path):
        config = load_config(sample_config_path)
        assert config.clustering.resolution == 1.5
        assert config.clustering.min_cluster_size == 3
        assert config.projection.min_dist == 0.2
        assert config.projection.spread == 1.0

    def test_search_config(self, sample_config_path):
        config = load_config(sample_config_path)
        assert config.search.topic_result_count == 3
        assert config.search.similarity_threshold == 0.5
        assert config.search.item_result_count == 10

    def test_empty_section(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("other: {}\n")
        assert load_config(path).edges == EdgeConfig()


class TestValidation:
    def test_threshold_out_of_range(self, tmp_path):
        with pytest.raises(ConfigurationError, match="merge_threshold"):
            load_config(_write(tmp_path, {"resolver": {"merge_threshold": 1.5}}))

    def test_non_positive_cap(self, tmp_path):
        with pytest.raises(ConfigurationError, match="max_related"):
            load_config(_write(tmp_path, {"edges": {"max_related": 0}}))

    def test_top_k_cannot_exceed_pool(self, tmp_path):
        with pytest.raises(ConfigurationError, match="classify_top_k"):
            load_config(_write(tmp_path, {"edges": {"candidate_pool": 3, "classify_top_k": 5}}))

    def test_min_dist_above_spread(self, tmp_path):
        with pytest.raises(ConfigurationError, match="min_dist"):
            load_config(_write(tmp_path, {"projection": {"min_dist": 3.0, "spread": 1.0}}))

    def test_defaults_are_valid(self):
        config = TopicGraphConfig()
        assert validate_config(config) is config


class TestEnvironmentOverrides:
    def test_db_path_override(self, sample_config_path, tmp_path, monkeypatch):
        monkeypatch.setenv("TOPICGRAPH_DB_PATH", str(tmp_path / "override.sqlite"))
        config = load_config(sample_config_path)
        assert config.storage.db_path.endswith("override.sqlite")

    def test_float_override(self, sample_config_path, monkeypatch):
        monkeypatch.setenv("TOPICGRAPH_MERGE_THRESHOLD", "0.7")
        config = load_config(sample_config_path)
        assert config.resolver.merge_threshold == 0.7

    def test_int_override(self, sample_config_path, monkeypatch):
        monkeypatch.setenv("TOPICGRAPH_EDGES_MAX_PARENTS", "4")
        assert load_config(sample_config_path).edges.max_parents == 4

    def test_bool_override(self, sample_config_path, monkeypatch):
        monkeypatch.setenv("TOPICGRAPH_JSON_LOGS", "yes")
        assert load_config(sample_config_path).observability.json_logs is True

    def test_invalid_override_is_rejected(self, sample_config_path, monkeypatch):
        monkeypatch.setenv("TOPICGRAPH_SEARCH_SIMILARITY_THRESHOLD", "2")
        with pytest.raises(ConfigurationError):
            load_config(sample_config_path)


class TestSingleton:
    def test_get_config_is_cached(self):
        first = get_config()
        assert get_config() is first

    def test_reset_config(self):
        first = get_config()
        reset_config()
        assert get_config() is not first

    def test_frozen(self):
        config = TopicGraphConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.version = "2.0"
