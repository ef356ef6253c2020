"""Runtime settings for the Cortex connection, loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_TIMEOUT_S = 30
CONNECTOR_TYPES = {"api", "in_memory"}


class ConfigurationError(ValueError):
    """Raised when required environment configuration is missing or malformed."""


@dataclass(frozen=True)
class CortexSettings:
    """Connection details for one Cortex instance."""

    url: str
    api_key: str
    verify_ssl: bool = True
    timeout_s: int = DEFAULT_TIMEOUT_S
    connector: str = "api"
    log_level: str = "INFO"

    @property
    def api_base_url(self) -> str:
        return f"{self.url}/api"

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "CortexSettings":
        source = os.environ if env is None else env

        connector = (_clean(source.get("CORTEX_MCP_CONNECTOR")) or "api").lower()
        if connector not in CONNECTOR_TYPES:
            raise ConfigurationError(
                f"CORTEX_MCP_CONNECTOR must be one of {sorted(CONNECTOR_TYPES)}, got {connector!r}"
            )

        # The in-memory connector never talks to a Cortex instance.
        url = _clean(source.get("CORTEX_URL")) or ""
        api_key = _clean(source.get("CORTEX_API_KEY")) or ""
        if connector == "api":
            if not url:
                raise ConfigurationError("CORTEX_URL environment variable is required")
            if not api_key:
                raise ConfigurationError("CORTEX_API_KEY environment variable is required")

        return cls(
            url=url.rstrip("/"),
            api_key=api_key,
            verify_ssl=source.get("CORTEX_VERIFY_SSL") != "false",
            timeout_s=_parse_timeout(source.get("CORTEX_TIMEOUT")),
            connector=connector,
            log_level=(_clean(source.get("CORTEX_MCP_LOG_LEVEL")) or "INFO").upper(),
        )

    def redacted(self) -> dict[str, str]:
        return {
            "url": self.url,
            "api_key": _redact_token(self.api_key),
            "verify_ssl": str(self.verify_ssl).lower(),
            "timeout_s": str(self.timeout_s),
            "connector": self.connector,
        }


def load_settings(env: dict[str, str] | None = None) -> CortexSettings:
    """Build settings from the process environment (or an explicit mapping)."""

    return CortexSettings.from_env(env)


def _parse_timeout(value: str | None) -> int:
    raw = _clean(value)
    if raw is None:
        return DEFAULT_TIMEOUT_S
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"CORTEX_TIMEOUT must be an integer, got {raw!r}") from exc
    if parsed < 1:
        raise ConfigurationError(f"CORTEX_TIMEOUT must be positive, got {parsed}")
    return parsed


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _redact_token(token: str | None) -> str:
    if not token:
        return "unset"
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"
