import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
REPO_ROOT = Path(__file__).resolve().parents[3]
if str(SRC) not in sys.path:
    sys.path.append(str(SRC))
if str(REPO_ROOT) not in sys.path:
    sys.path.append(str(REPO_ROOT))

import httpx
import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("APP_ENV", "test")
os.environ["DIFY_API_URL"] = "http://dify.test/v1"
os.environ["API_KEY"] = "test-api-key"
for _name in ("DIFY_USER", "SYSTEM_INPUT_VARIABLE", "INPUT_VARIABLE", "OUTPUT_VARIABLE"):
    os.environ.pop(_name, None)

from workflow_gateway import settings as settings_module

settings_module.get_settings.cache_clear()

from workflow_gateway.main import app, get_http_client
from workflow_gateway.settings import Settings, get_settings


def sse_body(*frames) -> bytes:
    lines = []
    for frame in frames:
        text = frame if isinstance(frame, str) else json.dumps(frame, ensure_ascii=False)
        lines.append(f"data: {text}\n\n")
    return "".join(lines).encode("utf-8")


def split_every(body: bytes, size: int) -> list[bytes]:
    return [body[i : i + size] for i in range(0, len(body), size)]


async def _iter_parts(parts):
    for part in parts:
        yield part


def stream_response(parts: list[bytes], content_type: str = "text/event-stream") -> httpx.Response:
    return httpx.Response(200, headers={"content-type": content_type}, content=_iter_parts(parts))


class FakeBackend:
    """Stands in for the workflow backend behind ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.upload_status = 200
        self.workflow_response = lambda request: httpx.Response(
            200, json={"data": {"outputs": {"answer": "ok"}, "total_tokens": 7}}
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/files/upload"):
            if self.upload_status != 200:
                return httpx.Response(self.upload_status, text="upload rejected")
            return httpx.Response(200, json={"id": f"file-{len(self.uploads)}"})
        if request.url.path.endswith("/workflows/run"):
            return self.workflow_response(request)
        return httpx.Response(404, json={"error": "not found"})

    @property
    def uploads(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/files/upload")]

    @property
    def runs(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/workflows/run")]

    def last_run_body(self) -> dict:
        return json.loads(self.runs[-1].content)


@pytest.fixture()
def make_settings():
    def _make(**overrides) -> Settings:
        values = {"DIFY_API_URL": "http://dify.test/v1", "API_KEY": "test-api-key"}
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture()
def backend():
    return FakeBackend()


@pytest.fixture()
def http_client(backend):
    return httpx.AsyncClient(transport=httpx.MockTransport(backend.handler))


@pytest.fixture()
def use_settings(make_settings):
    def _use(**overrides) -> Settings:
        settings = make_settings(**overrides)
        app.dependency_overrides[get_settings] = lambda: settings
        return settings

    return _use


@pytest.fixture()
def client(http_client, use_settings):
    use_settings()
    app.dependency_overrides[get_http_client] = lambda: http_client
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def event_stream():
    class EventStream:
        body = staticmethod(sse_body)
        split = staticmethod(split_every)
        response = staticmethod(stream_response)

    return EventStream
