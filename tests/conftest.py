import sys
from pathlib import Path

import pytest


# Ensure local src/ package and tests.mocks imports work without editable install.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for path in (SRC, ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow-running (runs the real UMAP reducer)"
    )


def pytest_addoption(parser):
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow tests"
    )


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless --run-slow is passed."""
    if config.getoption("--run-slow", default=False):
        return
    skip_slow = pytest.mark.skip(reason="Slow test skipped. Use --run-slow to run.")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def clean_config(monkeypatch, tmp_path):
    """Isolate every test from the global config singleton and env overrides."""
    from topicgraph.core.config import reset_config

    monkeypatch.setenv("TOPICGRAPH_DB_PATH", str(tmp_path / "topicgraph.sqlite"))
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config():
    from topicgraph.core.config import TopicGraphConfig
    return TopicGraphConfig()


@pytest.fixture
def store(tmp_path):
    from topicgraph.core.graph_store import GraphStore
    return GraphStore(str(tmp_path / "graph.sqlite"), timeout=5.0)


@pytest.fixture
def classifier():
    from tests.mocks import ScriptedClassifier
    return ScriptedClassifier()


@pytest.fixture
def manager(store, classifier, config):
    """GraphManager with a scripted classifier and the linear reducer."""
    from topicgraph.core.graph_manager import GraphManager
    from tests.mocks import LinearReducer

    mgr = GraphManager(store=store, classifier=classifier, config=config, reducer_factory=LinearReducer)
    mgr.initialize()
    return mgr


@pytest.fixture
def graph_id(manager):
    return manager.config.default_graph_id
