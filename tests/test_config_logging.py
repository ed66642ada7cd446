"""
Tests for environment configuration and structured logging
"""

import io
import json
import logging

import pytest

from loan_offers import config as config_module
from loan_offers.config import LendingConfig, get_config, reload_config
from loan_offers.logging_config import JSONFormatter, setup_logging, log_action


@pytest.fixture
def restore_config():
    original = config_module.config
    yield
    config_module.config = original


class TestConfig:
    """Test LendingConfig defaults and environment overrides"""

    def test_defaults(self):
        config = LendingConfig()

        assert config.cas_max_retries == 3
        assert config.amount_tolerance == "0.01"
        assert config.enable_audit_logging is True

    def test_environment_override(self, monkeypatch, restore_config):
        monkeypatch.setenv("LENDING_CAS_MAX_RETRIES", "5")
        monkeypatch.setenv("LENDING_STORAGE_BACKEND", "memory")

        config = reload_config()

        assert config.cas_max_retries == 5
        assert config.storage_backend == "memory"
        assert get_config() is config


class TestStructuredLogging:
    """Test JSON log output"""

    def make_logger(self, name):
        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JSONFormatter())
        logger = logging.getLogger(name)
        logger.handlers = [handler]
        logger.setLevel(logging.INFO)
        logger.propagate = False
        return logger, stream

    def test_log_action_fields(self):
        logger, stream = self.make_logger("loan_offers.test.actions")

        log_action(logger, "info", "Offer accepted", user_id="bob",
                   action="offer.accept", resource="offer:OFFER001",
                   extra={"total_installments": 12})

        entry = json.loads(stream.getvalue())
        assert entry["level"] == "INFO"
        assert entry["message"] == "Offer accepted"
        assert entry["user_id"] == "bob"
        assert entry["action"] == "offer.accept"
        assert entry["resource"] == "offer:OFFER001"
        assert entry["extra"] == {"total_installments": 12}
        assert "correlation_id" not in entry

    def test_disabled_level_is_skipped(self):
        logger, stream = self.make_logger("loan_offers.test.levels")

        log_action(logger, "debug", "hidden")
        assert stream.getvalue() == ""

    def test_setup_logging_text_format(self):
        logger = setup_logging(level="WARNING", log_format="text", logger_name="loan_offers.test.setup")

        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

        # Calling again replaces the handler rather than stacking another
        setup_logging(level="INFO", logger_name="loan_offers.test.setup")
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
