"""
Configuration (reads from environment variables)

Every value is optional: tool calls normally carry their own api_key /
api_secret, and the environment only supplies defaults.
"""

import os
from dataclasses import dataclass
from typing import Mapping

DEFAULT_FRAPPE_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 15.0


def _first(environ: Mapping[str, str], *names: str, default: str | None = None) -> str | None:
    for name in names:
        value = environ.get(name)
        if value:
            return value
    return default


@dataclass(frozen=True)
class Settings:
    frappe_url: str = DEFAULT_FRAPPE_URL
    api_key: str | None = None
    api_secret: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8003

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from FRAPPE_* variables, falling back to the ERPNEXT_URL / API_KEY / API_SECRET names."""
        env = os.environ if environ is None else environ
        return cls(
            frappe_url=_first(env, "FRAPPE_URL", "ERPNEXT_URL", default=DEFAULT_FRAPPE_URL).rstrip("/"),
            api_key=_first(env, "FRAPPE_API_KEY", "API_KEY"),
            api_secret=_first(env, "FRAPPE_API_SECRET", "API_SECRET"),
            timeout=float(_first(env, "FRAPPE_TIMEOUT", default=str(DEFAULT_TIMEOUT))),
            log_level=_first(env, "FRAPPE_MCP_LOG_LEVEL", default="INFO").upper(),
            host=_first(env, "FRAPPE_MCP_HOST", default="0.0.0.0"),
            port=int(_first(env, "FRAPPE_MCP_PORT", default="8003")),
        )

    @property
    def has_default_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the process-wide settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
