import json
import logging

from fastapi import FastAPI, HTTPException, Request
from starlette.testclient import TestClient

from app.app_logging import _install_access_logging, current_request_id


def _create_app() -> FastAPI:
    app = FastAPI()

    @app.post("/api/conversations/{conversation_id}/messages")
    async def reply(conversation_id: str, request: Request):
        logging.getLogger("app.test").info("handling reply")
        return {"rid": request.state.request_id, "context": current_request_id()}

    @app.get("/api/broken")
    async def broken():
        raise HTTPException(status_code=503, detail="down")

    @app.get("/api/health")
    async def health():  # pragma: no cover - simple
        return {"status": "ok"}

    _install_access_logging(app)
    return app


def test_request_id_is_echoed_and_content_scrubbed(caplog, monkeypatch):
    monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
    app = _create_app()

    with TestClient(app) as client, caplog.at_level(logging.INFO, logger="uvicorn.access"):
        resp = client.post(
            "/api/conversations/c1/messages?token=abc",
            json={"content": "I can't cope"},
            headers={"X-Request-Id": "abc", "Authorization": "Bearer secret"},
        )

        assert resp.status_code == 200
        assert resp.headers["X-Request-Id"] == "abc"
        assert resp.json() == {"rid": "abc", "context": "abc"}

        record = next(r for r in caplog.records if r.name == "uvicorn.access")
        data = json.loads(record.getMessage())
        assert data["request_id"] == "abc"
        assert data["headers"]["authorization"] == "***"
        assert data["query"] == {"token": "***"}
        assert data["body"] == {"content": "***"}
        assert "can't cope" not in record.getMessage()

    assert current_request_id() == "-"


def test_generated_request_id_and_error_level(caplog):
    app = _create_app()

    with TestClient(app) as client, caplog.at_level(logging.INFO, logger="uvicorn.access"):
        resp = client.get("/api/broken")

        assert resp.status_code == 503
        assert len(resp.headers["X-Request-Id"]) == 32
        record = [r for r in caplog.records if r.name == "uvicorn.access"][-1]
        assert record.levelno == logging.WARNING
        assert "body" not in json.loads(record.getMessage())


def test_skip_paths_are_not_logged(caplog):
    app = _create_app()

    with TestClient(app) as client, caplog.at_level(logging.INFO, logger="uvicorn.access"):
        client.get("/api/health")
        assert [r for r in caplog.records if r.name == "uvicorn.access"] == []
