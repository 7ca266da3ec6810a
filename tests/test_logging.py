import json
import logging
from logging.handlers import TimedRotatingFileHandler

import pytest
from starlette.testclient import TestClient

from app.app_logging import RequestContextFilter, _scrub, init_logging


@pytest.fixture
def clean_loggers():
    loggers = [logging.getLogger("app"), logging.getLogger("uvicorn.access")]
    for logger in loggers:
        logger.handlers.clear()
    yield loggers
    for logger in loggers:
        logger.handlers.clear()


def _rotating(logger: logging.Logger) -> TimedRotatingFileHandler:
    return next(h for h in logger.handlers if isinstance(h, TimedRotatingFileHandler))


def test_rotation_settings(monkeypatch, tmp_path, clean_loggers):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_RETENTION_DAYS", "5")

    init_logging()

    for logger in clean_loggers:
        handler = _rotating(logger)
        assert handler.when == "MIDNIGHT"
        assert handler.backupCount == 5
        assert any(isinstance(f, RequestContextFilter) for f in handler.filters)


def test_existing_access_handlers_are_replaced(monkeypatch, tmp_path, clean_loggers):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    access_logger = clean_loggers[1]
    stream_handler = logging.StreamHandler()
    access_logger.addHandler(stream_handler)

    init_logging()

    assert stream_handler not in access_logger.handlers
    assert _rotating(access_logger)


def test_log_files_carry_request_id_and_redact(tmp_path, app_factory, clean_loggers):
    app = app_factory(tmp_path, log_request_bodies=True)
    app_logger = clean_loggers[0]
    app_logger.info("orchestrator ready")

    with TestClient(app) as client:
        resp = client.post(
            "/echo",
            json={"content": "my manager ignores me", "email": "sarah@acme.example", "turn": 2},
            headers={"Authorization": "Bearer secret", "X-Request-Id": "req-42"},
        )
        assert resp.status_code == 200

    for logger in clean_loggers:
        for handler in logger.handlers:
            handler.flush()

    app_log = (tmp_path / "app.log").read_text()
    assert "orchestrator ready" in app_log
    assert "[-]" in app_log

    access_line = (tmp_path / "access.log").read_text().splitlines()[-1]
    assert "[req-42]" in access_line
    data = json.loads(access_line.split("]: ", 1)[1])
    assert data["headers"]["authorization"] == "***"
    assert data["body"] == {"content": "***", "email": "***", "turn": 2}


def test_scrub_is_recursive_and_configurable(monkeypatch):
    payload = {"messages": [{"Content": "hi", "sequence": 1}], "department": "Sales"}

    assert _scrub(payload) == {"messages": [{"Content": "***", "sequence": 1}], "department": "Sales"}

    monkeypatch.setenv("LOG_SCRUB_FIELDS", "department, ")
    assert _scrub(payload)["department"] == "***"
