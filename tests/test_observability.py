"""
Tests for logging configuration.
"""

import logging

import pytest

from provisioner.core.observability.logging_config import resolve_level, setup_logging


@pytest.fixture(autouse=True)
def _restore_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    def test_console_level(self):
        setup_logging("INFO")
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1

    def test_unknown_level_falls_back(self):
        setup_logging("LOUD")
        assert logging.getLogger().level == logging.WARNING

    def test_file_handler(self, tmp_path, monkeypatch):
        log_file = tmp_path / "provision.log"
        monkeypatch.setenv("PROVISION_LOG_FILE", str(log_file))
        monkeypatch.setenv("PROVISION_LOG_FILE_LEVEL", "DEBUG")
        setup_logging("WARNING")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        logging.getLogger("provisioner.test").debug("hello file")
        for handler in root.handlers:
            handler.flush()
        assert "hello file" in log_file.read_text()
        for handler in root.handlers:
            if isinstance(handler, logging.FileHandler):
                handler.close()


class TestResolveLevel:
    def test_cli_wins(self, monkeypatch):
        monkeypatch.setenv("PROVISION_LOG_LEVEL", "DEBUG")
        assert resolve_level("ERROR") == "ERROR"

    def test_env(self, monkeypatch):
        monkeypatch.setenv("PROVISION_LOG_LEVEL", "DEBUG")
        assert resolve_level(None) == "DEBUG"

    def test_default(self, monkeypatch):
        monkeypatch.delenv("PROVISION_LOG_LEVEL", raising=False)
        assert resolve_level() == "WARNING"
