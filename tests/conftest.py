import json
import time
import uuid
from types import SimpleNamespace

import pytest

import database
from auth import AuthSession


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.content = b"" if payload is None else json.dumps(payload).encode()
        self.text = self.content.decode()

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeStore:
    """In-memory stand-in for the PostgREST endpoints used by database.py."""

    def __init__(self):
        self.tables = {"dreams": [], "profiles": []}
        self.calls = []
        self.fail_with = None

    def __call__(self, method, url, headers=None, params=None, json=None, timeout=None):
        table = url.rsplit("/", 1)[-1]
        self.calls.append({"method": method, "table": table, "params": params or {}, "json": json})
        if self.fail_with is not None:
            return FakeResponse(self.fail_with, {"message": "store unavailable"})

        rows = self.tables[table]
        filters = {
            key: value[len("eq."):]
            for key, value in (params or {}).items()
            if isinstance(value, str) and value.startswith("eq.")
        }

        def matches(row):
            return all(str(row.get(k)) == v for k, v in filters.items())

        if method == "GET":
            found = [row for row in rows if matches(row)]
            if (params or {}).get("order") == "created_at.desc":
                found.sort(key=lambda r: r["created_at"], reverse=True)
            return FakeResponse(200, found)

        if method == "POST":
            row = dict(json)
            existing = [r for r in rows if "id" in row and r["id"] == row["id"]]
            if existing:
                existing[0].update(row)
                return FakeResponse(201, [existing[0]])
            row.setdefault("id", str(uuid.uuid4()))
            row.setdefault("created_at", "2026-10-%02dT08:00:00+00:00" % (len(rows) + 1))
            rows.append(row)
            return FakeResponse(201, [row])

        if method == "DELETE":
            removed = [row for row in rows if matches(row)]
            self.tables[table] = [row for row in rows if not matches(row)]
            return FakeResponse(200, removed)

        raise AssertionError(f"Unexpected method {method}")

    def calls_for(self, method, table="dreams"):
        return [c for c in self.calls if c["method"] == method and c["table"] == table]


class FakeModels:
    def __init__(self, text="", error=None, response=None):
        self.text = text
        self.error = error
        self.response = response
        self.calls = []

    def generate_content(self, model, contents, config=None):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.error is not None:
            raise self.error
        if self.response is not None:
            return self.response
        return SimpleNamespace(
            text=self.text,
            prompt_feedback=None,
            candidates=[SimpleNamespace(finish_reason="STOP")],
        )


class FakeGenaiClient:
    def __init__(self, **kwargs):
        self.models = FakeModels(**kwargs)


@pytest.fixture
def fake_store(monkeypatch):
    store = FakeStore()
    monkeypatch.setattr(database.requests, "request", store)
    return store


@pytest.fixture
def auth_session():
    return AuthSession(
        user_id="user-1",
        email="dreamer@example.com",
        access_token="access-token",
        refresh_token="refresh-token",
        expires_at=time.time() + 3600,
    )


@pytest.fixture
def flask_app():
    from app import app
    app.config.update(TESTING=True)
    return app


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def signed_in_client(client, auth_session):
    with client.session_transaction() as sess:
        sess["auth"] = auth_session.to_dict()
    return client
