"""Pytest configuration and fixtures for frappe_mcp tests."""

import json
from typing import Any

import httpx
import pytest

from frappe_mcp import documents
from frappe_mcp.client import FrappeClient
from frappe_mcp.config import Settings

FRAPPE_URL = "http://frappe.test"


class FakeFrappe:
    """
    In-memory stand-in for the Frappe REST API.

    Documents live in ``docs`` keyed by (doctype, name). Queue entries in
    ``create_responses`` override the next POST /api/resource calls: a dict
    is returned as ``data`` without being stored, an int is returned as an
    error status.
    """

    def __init__(self):
        self.docs: dict[tuple[str, str], dict] = {}
        self.requests: list[httpx.Request] = []
        self.create_responses: list[Any] = []
        self.get_status: int | None = None
        self.list_results: list[dict] | None = None
        self.method_results: dict[str, Any] = {}
        self.status_override: int | None = None
        self._counter = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def add(self, doctype: str, doc: dict) -> dict:
        doc = {"doctype": doctype, **doc}
        self.docs[(doctype, doc["name"])] = doc
        return doc

    def count(self, method: str, path_prefix: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path.startswith(path_prefix))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_override:
            return httpx.Response(
                self.status_override,
                json={"exc_type": "AuthenticationError", "exception": "frappe.exceptions.AuthenticationError"},
            )

        parts = request.url.path.split("/")[1:]
        if parts[:2] == ["api", "method"]:
            return self._method(parts[2], request)
        if parts[:2] == ["api", "resource"]:
            doctype = parts[2]
            name = parts[3] if len(parts) > 3 else None
            if request.method == "GET" and name:
                return self._get(doctype, name)
            if request.method == "GET":
                return self._list(doctype, request)
            if request.method == "POST":
                return self._create(doctype, json.loads(request.content))
            if request.method == "PUT":
                return self._update(doctype, name, json.loads(request.content))
            if request.method == "DELETE":
                return self._delete(doctype, name)
        return httpx.Response(404, json={"exc_type": "PageDoesNotExistError"})

    def _not_found(self, doctype: str, name: str) -> httpx.Response:
        messages = json.dumps([json.dumps({"message": f"{doctype} {name} not found"})])
        return httpx.Response(
            404,
            json={"exc_type": "DoesNotExistError", "_server_messages": messages},
        )

    def _get(self, doctype: str, name: str) -> httpx.Response:
        if self.get_status:
            return httpx.Response(self.get_status, json={"exc_type": "DoesNotExistError"})
        doc = self.docs.get((doctype, name))
        if doc is None:
            return self._not_found(doctype, name)
        return httpx.Response(200, json={"data": doc})

    def _list(self, doctype: str, request: httpx.Request) -> httpx.Response:
        if self.list_results is not None:
            return httpx.Response(200, json={"data": self.list_results})

        filters = json.loads(request.url.params.get("filters", "[]"))
        rows = [doc for (dt, _), doc in self.docs.items() if dt == doctype]
        for field, op, value in filters:
            if op == "=":
                rows = [r for r in rows if r.get(field) == value]
            elif op == "like":
                needle = value.strip("%")
                rows = [r for r in rows if needle in str(r.get(field, ""))]

        limit = int(request.url.params.get("limit_page_length", 0))
        if limit:
            rows = rows[:limit]
        fields = json.loads(request.url.params.get("fields", "null"))
        if fields:
            rows = [{f: r.get(f) for f in fields} for r in rows]
        return httpx.Response(200, json={"data": rows})

    def _create(self, doctype: str, values: dict) -> httpx.Response:
        if self.create_responses:
            queued = self.create_responses.pop(0)
            if isinstance(queued, int):
                return httpx.Response(queued, json={"exception": "frappe.exceptions.ValidationError"})
            return httpx.Response(200, json={"data": queued})

        self._counter += 1
        name = values.get("name") or f"{doctype.upper()[:4]}-{self._counter:03d}"
        doc = self.add(doctype, {**values, "name": name})
        return httpx.Response(200, json={"data": doc})

    def _update(self, doctype: str, name: str, values: dict) -> httpx.Response:
        doc = self.docs.get((doctype, name))
        if doc is None:
            return self._not_found(doctype, name)
        doc.update(values)
        return httpx.Response(200, json={"data": doc})

    def _delete(self, doctype: str, name: str) -> httpx.Response:
        if self.docs.pop((doctype, name), None) is None:
            return self._not_found(doctype, name)
        return httpx.Response(202, json={"message": "ok"})

    def _method(self, method: str, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        if method == "frappe.client.get_count":
            rows = [doc for (dt, _), doc in self.docs.items() if dt == body["doctype"]]
            return httpx.Response(200, json={"message": len(rows)})
        return httpx.Response(200, json={"message": self.method_results.get(method, "ok")})


@pytest.fixture
def fake_frappe() -> FakeFrappe:
    return FakeFrappe()


@pytest.fixture
def settings() -> Settings:
    """Settings with default credentials in the environment."""
    return Settings(frappe_url=FRAPPE_URL, api_key="env_key", api_secret="env_secret")


@pytest.fixture
def bare_settings() -> Settings:
    """Settings with no default credentials."""
    return Settings(frappe_url=FRAPPE_URL)


@pytest.fixture
def client(fake_frappe: FakeFrappe) -> FrappeClient:
    return FrappeClient(FRAPPE_URL, "key", "secret", transport=fake_frappe.transport)


@pytest.fixture
def sleeps(monkeypatch) -> list[float]:
    """Record retry backoff delays instead of sleeping."""
    delays: list[float] = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(documents.asyncio, "sleep", fake_sleep)
    return delays


@pytest.fixture
def credentials() -> dict:
    return {"api_key": "req_key", "api_secret": "req_secret"}
