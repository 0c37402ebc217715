"""
Frappe REST API client.

Thin async wrapper over the /api/resource and /api/method endpoints. Each
call opens a short-lived httpx.AsyncClient, so a client object holds no
connection state and can be built per tool call.
"""

import json
import re
from typing import Any
from urllib.parse import quote

import httpx

from .auth import Credentials
from .config import DEFAULT_TIMEOUT, Settings, get_settings
from .errors import FrappeApiError, NoClientAvailable
from .log import get_logger

logger = get_logger("client")

_TAG_RE = re.compile(r"<[^>]+>")


FILTER_OPERATORS = frozenset(
    {"=", "!=", ">", "<", ">=", "<=", "like", "not like", "in", "not in", "is", "between"}
)


def format_filters(filters: dict | list | None) -> list | None:
    """
    Convert tool-style filters into Frappe filter triples.

    ``{"status": "Open"}`` becomes ``[["status", "=", "Open"]]`` and
    ``{"qty": [">", 5]}`` becomes ``[["qty", ">", 5]]``. Lists are assumed
    to be in Frappe form already.
    """
    if not filters:
        return None
    if isinstance(filters, list):
        return filters

    formatted = []
    for field, value in filters.items():
        if (
            isinstance(value, (list, tuple))
            and len(value) == 2
            and isinstance(value[0], str)
            and value[0].lower() in FILTER_OPERATORS
        ):
            formatted.append([field, value[0], value[1]])
        else:
            formatted.append([field, "=", value])
    return formatted


def _segment(value: str) -> str:
    return quote(str(value), safe="")


def _server_messages(body: dict) -> list[str]:
    """Decode Frappe's double-encoded _server_messages list."""
    raw = body.get("_server_messages")
    if not raw:
        return []
    try:
        entries = json.loads(raw) if isinstance(raw, str) else raw
    except ValueError:
        return [str(raw)]

    messages = []
    for entry in entries:
        try:
            decoded = json.loads(entry) if isinstance(entry, str) else entry
        except ValueError:
            decoded = entry
        text = decoded.get("message") if isinstance(decoded, dict) else decoded
        if text:
            messages.append(_TAG_RE.sub("", str(text)).strip())
    return messages


def _api_error(response: httpx.Response, endpoint: str) -> FrappeApiError:
    status = response.status_code
    try:
        body = response.json()
    except ValueError:
        body = None

    details: Any
    if isinstance(body, dict):
        messages = _server_messages(body)
        details = {
            "exc_type": body.get("exc_type"),
            "exception": body.get("exception"),
            "server_messages": messages,
        }
        summary = "; ".join(messages) or body.get("exception") or body.get("message") or response.reason_phrase
    else:
        details = response.text[:500] if response.text else None
        summary = response.reason_phrase

    if status == 401:
        message = f"Authentication failed ({status}): {summary}"
    elif status == 403:
        message = f"Permission denied ({status}): {summary}"
    elif status == 404:
        message = f"Not found ({status}): {summary}"
    else:
        message = f"Frappe API error ({status}): {summary}"
    return FrappeApiError(message, status_code=status, endpoint=endpoint, details=details)


class FrappeClient:
    """Frappe REST client bound to one instance URL and one API key pair."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_secret: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "Authorization": f"token {api_key}:{api_secret}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        payload: dict | None = None,
    ) -> dict:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, headers={"Expect": ""}, transport=self.transport
            ) as client:
                resp = await client.request(method, url, headers=self.headers, params=params, json=payload)
        except httpx.TimeoutException as e:
            raise FrappeApiError(f"Request to {path} timed out: {e}", endpoint=path) from e
        except httpx.RequestError as e:
            raise FrappeApiError(f"Connection error calling {path}: {e}", endpoint=path) from e

        if resp.is_error:
            raise _api_error(resp, path)
        if not resp.content:
            return {}
        try:
            body = resp.json()
        except ValueError as e:
            raise FrappeApiError(
                f"Invalid JSON response from {path}",
                status_code=resp.status_code,
                endpoint=path,
                details=resp.text[:500],
            ) from e

        if not isinstance(body, dict):
            raise FrappeApiError(
                f"Invalid response format from {path}: expected a JSON object",
                status_code=resp.status_code,
                endpoint=path,
                details=resp.text[:500],
            )
        return body

    async def _data(self, method: str, path: str, expected: type, **kwargs) -> Any:
        """Request ``path`` and return its ``data`` member, which must be an ``expected`` instance."""
        data = (await self._request(method, path, **kwargs)).get("data", expected())
        if not isinstance(data, expected):
            raise FrappeApiError(
                f"Invalid response format from {path}: 'data' is not a {expected.__name__}",
                endpoint=path,
                details={"data": data},
            )
        return data

    # ──────────────────────────────────────────────────────────────
    # /api/resource
    # ──────────────────────────────────────────────────────────────
    async def get_doc(self, doctype: str, name: str) -> dict:
        return await self._data("GET", f"/api/resource/{_segment(doctype)}/{_segment(name)}", dict)

    async def get_doc_list(
        self,
        doctype: str,
        fields: list[str] | None = None,
        filters: Any = None,
        order_by: str | None = None,
        limit: int | None = None,
        limit_start: int | None = None,
    ) -> list[dict]:
        params: dict[str, Any] = {}
        if fields:
            params["fields"] = json.dumps(fields)
        if filters:
            params["filters"] = json.dumps(filters)
        if order_by:
            params["order_by"] = order_by
        if limit is not None:
            params["limit_page_length"] = limit
        if limit_start:
            params["limit_start"] = limit_start

        return await self._data("GET", f"/api/resource/{_segment(doctype)}", list, params=params)

    async def create_doc(self, doctype: str, values: dict) -> dict:
        return await self._data("POST", f"/api/resource/{_segment(doctype)}", dict, payload=values)

    async def update_doc(self, doctype: str, name: str, values: dict) -> dict:
        return await self._data(
            "PUT", f"/api/resource/{_segment(doctype)}/{_segment(name)}", dict, payload=values
        )

    async def delete_doc(self, doctype: str, name: str) -> dict:
        return await self._request("DELETE", f"/api/resource/{_segment(doctype)}/{_segment(name)}")

    # ──────────────────────────────────────────────────────────────
    # /api/method
    # ──────────────────────────────────────────────────────────────
    async def call(self, method: str, params: dict | None = None) -> Any:
        """Call a whitelisted method and return its ``message`` payload."""
        data = await self._request("POST", f"/api/method/{method}", payload=params or {})
        return data.get("message", data)

    async def get_count(self, doctype: str, filters: Any = None) -> int:
        count = await self.call("frappe.client.get_count", {"doctype": doctype, "filters": filters or {}})
        return int(count or 0)


def create_frappe_client(
    credentials: Credentials,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FrappeClient:
    settings = settings or get_settings()
    return FrappeClient(
        credentials.frappe_url or settings.frappe_url,
        credentials.api_key,
        credentials.api_secret,
        timeout=settings.timeout,
        transport=transport,
    )


def get_frappe_client(
    credentials: Credentials | None = None,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FrappeClient:
    """
    Get the client for a tool call.

    Resolved credentials win; otherwise the default client built from the
    environment is used. Raises NoClientAvailable when neither exists.
    """
    settings = settings or get_settings()
    if credentials is not None:
        return create_frappe_client(credentials, settings, transport)

    if not settings.has_default_credentials:
        raise NoClientAvailable()

    return FrappeClient(
        settings.frappe_url,
        settings.api_key,
        settings.api_secret,
        timeout=settings.timeout,
        transport=transport,
    )
