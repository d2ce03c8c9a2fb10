"""Tests for settings and logging setup"""
import logging

import pytest
import structlog
from pydantic import ValidationError

from rbus_dissector.config import Settings
from rbus_dissector.engine.protocol import MAX_DEPTH_LIMIT
from rbus_dissector.logging import setup_logging


def test_defaults():
    config = Settings()
    assert config.tcp_port == 10002
    assert config.uds_path == "/tmp/rtrouted"
    assert config.msgpack_depth_limit == 16
    assert config.msgpack_object_limit == 20000
    assert config.heuristic_enabled is True


def test_environment_override(monkeypatch):
    monkeypatch.setenv("RBUS_MSGPACK_DEPTH_LIMIT", "4")
    monkeypatch.setenv("RBUS_HEURISTIC_ENABLED", "false")
    config = Settings()
    assert config.msgpack_depth_limit == 4
    assert config.heuristic_enabled is False


def test_invalid_limit_rejected(monkeypatch):
    monkeypatch.setenv("RBUS_MSGPACK_OBJECT_LIMIT", "0")
    with pytest.raises(ValidationError):
        Settings()


@pytest.mark.parametrize("level", ["DEBUG", "not-a-level", logging.WARNING, None])
def test_setup_logging_accepts_levels(level):
    setup_logging("rbus-test", level=level, log_to_file=False)
    assert structlog.is_configured()


def test_depth_limit_capped(monkeypatch):
    monkeypatch.setenv("RBUS_MSGPACK_DEPTH_LIMIT", str(MAX_DEPTH_LIMIT + 1))
    with pytest.raises(ValidationError):
        Settings()
