"""
Error types raised by the Frappe MCP server.

Every failure a tool call can surface is one of the classes below, each
tagged with a fixed ``kind`` when it is raised. The dispatcher formats
errors by that tag instead of poking at arbitrary exception attributes.
"""

import re
from typing import Any

# "auth" as a whole word, or the authenticat- / unauthori- stems
AUTH_MESSAGE_RE = re.compile(r"\bauth\b|authenticat|unauthori", re.IGNORECASE)


# ──────────────────────────────────────────────────────────────
# Error Enrichment with Suggestions
# ──────────────────────────────────────────────────────────────
def suggest_fix(message: str) -> str | None:
    """Return an actionable suggestion for a remote error message, if one applies."""
    error_str = message.lower()

    if "validation" in error_str or "mandatory" in error_str:
        return "Check required fields are filled. Use get_doctype_schema to see field requirements."
    if "permission" in error_str or "forbidden" in error_str:
        return "User lacks permission. Check user role permissions in Frappe."
    if "not found" in error_str or "404" in error_str:
        return "Document not found. Verify the document name/ID exists."
    if "duplicate" in error_str or "unique" in error_str:
        return "Duplicate entry. Check if record with similar data already exists."
    if "connection" in error_str or "timeout" in error_str or "timed out" in error_str:
        return "Connection issue. Try again or check Frappe server status."
    return None


class FrappeMcpError(Exception):
    """Base class for all errors surfaced to tool callers."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def auth_error(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class MissingCredentials(FrappeMcpError):
    """One or both of api_key / api_secret are absent."""

    kind = "missing_credentials"

    def __init__(self, message: str, missing: tuple[str, ...] = ()):
        super().__init__(message)
        self.missing = tuple(missing)

    @property
    def auth_error(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "missing": list(self.missing),
            "api_key_available": "api_key" not in self.missing,
            "api_secret_available": "api_secret" not in self.missing,
            "auth_method": "API key/secret (token)",
        }


class NoClientAvailable(FrappeMcpError):
    kind = "no_client_available"

    def __init__(self, message: str | None = None):
        super().__init__(
            message
            or "No Frappe client available. Please provide API credentials in the request "
            "or set environment variables FRAPPE_API_KEY and FRAPPE_API_SECRET."
        )

    @property
    def auth_error(self) -> bool:
        return True


class FrappeApiError(FrappeMcpError):
    """The remote Frappe API rejected a request or could not be reached."""

    kind = "remote_api_error"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        endpoint: str | None = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint
        self.details = details

    @property
    def auth_error(self) -> bool:
        if self.status_code in (401, 403):
            return True
        return bool(AUTH_MESSAGE_RE.search(self.message))

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "status_code": self.status_code,
            "endpoint": self.endpoint,
            "details": self.details,
            "auth_error": self.auth_error,
        }


class VerificationFailure(FrappeMcpError):
    """Creation reported success but the document could not be found afterwards."""

    kind = "verification_failure"

    def __init__(self, doctype: str, reason: str, name: str | None = None):
        super().__init__(f"Verification failed: {reason}")
        self.doctype = doctype
        self.reason = reason
        self.name = name

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "doctype": self.doctype,
            "name": self.name,
            "reason": self.reason,
        }


class UnknownTool(FrappeMcpError):
    kind = "unknown_tool"

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class MissingArgument(FrappeMcpError):
    kind = "missing_argument"

    def __init__(self, *names: str, message: str | None = None):
        if message is None:
            if len(names) == 1:
                message = f"Missing required parameter: {names[0]}"
            else:
                message = f"Missing required parameters: {', '.join(names[:-1])} and {names[-1]}"
        super().__init__(message)
        self.names = names

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "parameters": list(self.names)}


class InvalidArgument(FrappeMcpError):
    kind = "invalid_argument"

    def __init__(self, name: str, message: str):
        super().__init__(message)
        self.name = name

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "parameter": self.name}
