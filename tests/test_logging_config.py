"""
Tests for logging setup: loguru sinks, JSON output and stdlib interception.
"""

import json
import logging
import sys

import pytest
from loguru import logger

from topicgraph.core.config import ObservabilityConfig, TopicGraphConfig, load_config
from topicgraph.core.logging_config import configure_from_config, configure_logging, is_configured


@pytest.fixture
def log_file(tmp_path):
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield tmp_path / "topicgraph.log"
    logger.remove()
    logger.add(sys.__stderr__)
    root.handlers[:] = handlers
    root.setLevel(level)


def _flush_and_read(path):
    # Removing the handler joins the enqueue worker
    logger.remove()
    return path.read_text(encoding="utf-8")


class TestConfigureLogging:

    def test_level_filters_messages(self, log_file):
        configure_logging(level="INFO", json_format=False, sink=str(log_file))
        logger.debug("hidden detail")
        logger.info("item inserted")

        text = _flush_and_read(log_file)
        assert "item inserted" in text
        assert "hidden detail" not in text
        assert is_configured()

    def test_json_format(self, log_file):
        configure_logging(level="DEBUG", json_format=True, sink=str(log_file))
        logger.warning("classifier degraded")

        records = [json.loads(line) for line in _flush_and_read(log_file).splitlines() if line]
        messages = [r["record"]["message"] for r in records]
        assert "classifier degraded" in messages

    def test_log_format_env(self, log_file, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "json")
        configure_logging(level="INFO", sink=str(log_file))
        logger.info("from env")

        line = _flush_and_read(log_file).splitlines()[-1]
        assert json.loads(line)["record"]["message"] == "from env"


class TestStdlibInterception:

    def test_stdlib_records_reach_loguru(self, log_file):
        configure_logging(level="INFO", json_format=False, sink=str(log_file))
        logging.getLogger("topicgraph.thirdparty").warning("stdlib says hi")

        assert "stdlib says hi" in _flush_and_read(log_file)

    def test_noisy_libraries_pinned(self, log_file):
        configure_logging(level="DEBUG", json_format=False, sink=str(log_file))
        for name in ("numba", "umap", "pynndescent"):
            assert logging.getLogger(name).level == logging.WARNING
        logger.remove()

    @pytest.mark.parametrize("level", ["TRACE", "SUCCESS"])
    def test_loguru_only_levels(self, log_file, level):
        configure_logging(level=level, json_format=False, sink=str(log_file))
        logger.log(level, "loguru level accepted")

        assert logging.getLogger("numba").level == logging.WARNING
        assert "loguru level accepted" in _flush_and_read(log_file)


class TestConfigureFromConfig:

    def test_observability_section_applied(self, log_file, monkeypatch):
        # configure_from_config has no sink argument; redirect the default one
        monkeypatch.setattr(sys, "stderr", log_file.open("w", encoding="utf-8"))
        config = TopicGraphConfig(observability=ObservabilityConfig(log_level="WARNING", json_logs=True))
        configure_from_config(config)
        logger.info("too quiet")
        logger.error("storage failed")

        logger.remove()
        sys.stderr.close()
        lines = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines() if line]
        messages = [r["record"]["message"] for r in lines]
        assert "storage failed" in messages
        assert "too quiet" not in messages

    def test_trace_from_environment(self, log_file, monkeypatch):
        monkeypatch.setenv("TOPICGRAPH_LOG_LEVEL", "TRACE")
        monkeypatch.setattr(sys, "stderr", log_file.open("w", encoding="utf-8"))
        configure_from_config(load_config(None))
        logger.trace("deep detail")

        logger.remove()
        sys.stderr.close()
        assert "deep detail" in log_file.read_text(encoding="utf-8")
