"""Shared fixtures for reqrun tests."""

import json
import os

import pytest
import yaml
from click.testing import CliRunner

from reqrun import core
from reqrun.errors import TransportError
from reqrun.models import ExtractionRule, HttpMethod, RequestDefinition, Response


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def global_reqrun_dir(tmp_path, monkeypatch):
    """Override the global ~/.reqrun directory to a temp location."""
    fake_global = tmp_path / "fake_home" / ".reqrun"
    fake_global.mkdir(parents=True)
    monkeypatch.setattr(core, "GLOBAL_DIR", fake_global)
    monkeypatch.setattr(core, "GLOBAL_CONFIG", fake_global / "config.yaml")
    monkeypatch.setattr(core, "GLOBAL_COLLECTIONS_DIR", fake_global / "collections")
    return fake_global


@pytest.fixture(autouse=True)
def isolate_env(monkeypatch):
    """Keep REQRUN_* variables from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("REQRUN_"):
            monkeypatch.delenv(key)


def make_response(status_code=200, body=None, headers=None, content_type="application/json", elapsed_ms=42.0):
    """Factory for Response objects. dict/list bodies are JSON-encoded."""
    if isinstance(body, dict | list):
        raw = json.dumps(body).encode()
    elif isinstance(body, str):
        raw = body.encode()
    else:
        raw = body or b""
    hdrs = dict(headers or {})
    if content_type and "Content-Type" not in hdrs:
        hdrs["Content-Type"] = content_type
    return Response(
        status_code=status_code,
        headers=tuple(hdrs.items()),
        body=raw,
        elapsed_ms=elapsed_ms,
    )


def make_definition(name="req", method="GET", url="http://x/", extract=None, **fields):
    """Factory for RequestDefinition; extract is {variable: path}."""
    rules = tuple(ExtractionRule(path=p, variable=v) for v, p in (extract or {}).items())
    return RequestDefinition(
        name=name,
        method=HttpMethod.parse(method),
        url=url,
        extractions=rules,
        **fields,
    )


class FakeTransport:
    """Records sent requests and replays canned responses in order.

    A TransportError instance in the queue is raised instead of returned.
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.sent = []

    def send(self, request):
        self.sent.append(request)
        if not self.responses:
            return make_response(body={})
        item = self.responses.pop(0)
        if isinstance(item, TransportError):
            raise item
        return item


@pytest.fixture
def transport():
    return FakeTransport()


def write_yaml(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data, sort_keys=False))


@pytest.fixture
def collections_dir(tmp_path):
    """A collections directory with one 'api' collection."""
    cdir = tmp_path / "collections"
    write_yaml(
        cdir / "api" / "collection.yaml",
        {
            "headers": [{"key": "Accept", "value": "application/json"}],
            "vars": [{"key": "host", "value": "http://collection.test"}],
        },
    )
    return cdir
