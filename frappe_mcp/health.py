"""Frappe API connectivity check."""

from dataclasses import asdict, dataclass

import httpx

from .auth import Credentials, validate_api_credentials, validate_per_request_credentials
from .client import get_frappe_client
from .config import Settings, get_settings
from .errors import FrappeMcpError
from .log import get_logger

logger = get_logger("health")


@dataclass(frozen=True)
class HealthCheck:
    healthy: bool
    token_auth: bool
    message: str
    per_request: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


async def check_frappe_api_health(
    credentials: Credentials | None = None,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> HealthCheck:
    """
    Check that token authentication against the Frappe API works.

    Lists a single DocType with the given (or environment) credentials.
    Remote failures are reported in the result, never raised.
    """
    settings = settings or get_settings()
    per_request = credentials is not None and credentials.per_request

    if credentials is not None:
        check = validate_per_request_credentials(credentials.api_key, credentials.api_secret)
    else:
        check = validate_api_credentials(settings)
    if not check.valid:
        logger.warning("API health check: %s", check.message)
        return HealthCheck(healthy=False, token_auth=False, message=check.message, per_request=per_request)

    try:
        client = get_frappe_client(credentials, settings, transport)
        await client.get_doc_list("DocType", fields=["name"], limit=1)
    except FrappeMcpError as e:
        logger.warning("Token authentication health check failed: %s", e)
        return HealthCheck(
            healthy=False,
            token_auth=False,
            message="API connection unhealthy. Token authentication failed. "
            f"Please ensure your API key and secret are correct. ({e})",
            per_request=per_request,
        )

    source = "per-request" if per_request else "environment"
    logger.info("Token authentication health check successful")
    return HealthCheck(
        healthy=True,
        token_auth=True,
        message=f"API connection healthy. Token auth: True. Using {source} credentials.",
        per_request=per_request,
    )
