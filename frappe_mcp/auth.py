"""
Credential resolution.

A tool call either carries its own api_key / api_secret pair or falls back
to the FRAPPE_API_KEY / FRAPPE_API_SECRET defaults. A half-supplied pair in
the request is an error, never a reason to quietly use the environment.
"""

from dataclasses import dataclass

from .config import Settings, get_settings
from .errors import MissingCredentials


@dataclass(frozen=True)
class Credentials:
    api_key: str
    api_secret: str
    frappe_url: str | None = None
    per_request: bool = True

    @property
    def auth_method(self) -> str:
        return "per-request" if self.per_request else "environment"


@dataclass(frozen=True)
class CredentialCheck:
    valid: bool
    message: str
    missing: tuple[str, ...] = ()

    def raise_for_missing(self) -> None:
        if not self.valid:
            raise MissingCredentials(self.message, self.missing)


def _missing(api_key: str | None, api_secret: str | None) -> tuple[str, ...]:
    missing = []
    if not api_key:
        missing.append("api_key")
    if not api_secret:
        missing.append("api_secret")
    return tuple(missing)


def _describe(missing: tuple[str, ...]) -> str:
    if len(missing) == 2:
        return "Both API key and API secret are missing"
    if missing == ("api_key",):
        return "API key is missing"
    return "API secret is missing"


def validate_api_credentials(settings: Settings | None = None) -> CredentialCheck:
    """Check that the environment supplies both halves of the API key pair."""
    settings = settings or get_settings()
    missing = _missing(settings.api_key, settings.api_secret)
    if missing:
        return CredentialCheck(
            valid=False,
            message=f"Authentication failed: {_describe(missing)}. "
            "API key/secret is the only supported authentication method.",
            missing=missing,
        )
    return CredentialCheck(valid=True, message="API credentials validation successful.")


def validate_per_request_credentials(api_key: str | None, api_secret: str | None) -> CredentialCheck:
    missing = _missing(api_key, api_secret)
    if missing:
        return CredentialCheck(
            valid=False,
            message=f"Authentication failed: {_describe(missing)} in request.",
            missing=missing,
        )
    return CredentialCheck(valid=True, message="Per-request API credentials validation successful.")


def resolve_credentials(
    api_key: str | None = None,
    api_secret: str | None = None,
    frappe_url: str | None = None,
    settings: Settings | None = None,
) -> Credentials:
    """
    Resolve the credentials for one tool call.

    Args:
        api_key: API key sent with the request, if any
        api_secret: API secret sent with the request, if any
        frappe_url: Target instance sent with the request, if any
        settings: Environment defaults (process settings when omitted)

    Raises:
        MissingCredentials: naming the absent half (or both)
    """
    settings = settings or get_settings()
    url = frappe_url or settings.frappe_url

    if api_key or api_secret:
        validate_per_request_credentials(api_key, api_secret).raise_for_missing()
        return Credentials(api_key, api_secret, url, per_request=True)

    validate_api_credentials(settings).raise_for_missing()
    return Credentials(settings.api_key, settings.api_secret, url, per_request=False)
