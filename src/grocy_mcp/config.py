"""Configuration for the Grocy MCP server.

All settings are read once, at process entry, into an immutable ``Settings``
object which is then passed to every component that needs it. Nothing else
in the package reads ``os.environ``.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional
from urllib.parse import urlparse

from .errors import ConfigurationError

logger = logging.getLogger("grocy-mcp")

API_KEY_HEADER = "GROCY-API-KEY"

TRUTHY_SERVER_FLAGS = ("true", "yes", "1", "on", "enabled")
HEADER_PREFIX = "HEADER_"
TOOL_PREFIX = "TOOL__"


@dataclass(frozen=True)
class Settings:
    """Deployment configuration. Built by :meth:`from_env`."""

    grocy_base_url: str = "http://localhost:9283"
    api_key: Optional[str] = None
    ssl_verify: bool = True
    enable_http_server: bool = False
    http_host: str = "0.0.0.0"
    http_port: int = 8080
    response_size_limit: int = 10000
    request_timeout: float = 30.0
    session_idle_timeout: float = 1800.0
    custom_headers: Mapping[str, str] = field(default_factory=dict)
    tool_env: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Parse settings from an environment mapping (defaults to ``os.environ``).

        Raises:
            ConfigurationError: If any value is malformed.
        """
        env = os.environ if environ is None else environ
        errors: list[str] = []

        base_url = env.get("GROCY_BASE_URL", "http://localhost:9283").strip()
        parsed = urlparse(base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append(f"GROCY_BASE_URL must be an http(s) URL, got '{base_url}'")
        base_url = base_url.rstrip("/")

        api_key = env.get("GROCY_APIKEY_VALUE") or None

        ssl_verify = env.get("GROCY_ENABLE_SSL_VERIFY", "true").strip().lower() != "false"
        enable_http = env.get("ENABLE_HTTP_SERVER", "false").strip().lower() in TRUTHY_SERVER_FLAGS

        http_port = _parse_int(env, "HTTP_SERVER_PORT", "8080", errors)
        if http_port is not None and not 1 <= http_port <= 65535:
            errors.append("HTTP_SERVER_PORT must be between 1 and 65535")

        size_limit = _parse_int(env, "REST_RESPONSE_SIZE_LIMIT", "10000", errors)
        if size_limit is not None and size_limit <= 0:
            errors.append("REST_RESPONSE_SIZE_LIMIT must be a positive number")

        timeout_raw = env.get("GROCY_REQUEST_TIMEOUT", "30")
        try:
            timeout = float(timeout_raw)
            if timeout <= 0:
                raise ValueError
        except ValueError:
            errors.append(f"GROCY_REQUEST_TIMEOUT must be a positive number of seconds, got '{timeout_raw}'")
            timeout = None

        idle_raw = env.get("HTTP_SESSION_IDLE_TIMEOUT", "1800")
        try:
            idle_timeout = float(idle_raw)
            if idle_timeout < 0:
                raise ValueError
        except ValueError:
            errors.append(f"HTTP_SESSION_IDLE_TIMEOUT must be a non-negative number of seconds, got '{idle_raw}'")
            idle_timeout = None

        if errors:
            raise ConfigurationError("Invalid environment variables:\n" + "\n".join(f"  - {e}" for e in errors))

        custom_headers = {
            key[len(HEADER_PREFIX):]: value
            for key, value in env.items()
            if key.upper().startswith(HEADER_PREFIX) and len(key) > len(HEADER_PREFIX)
        }
        tool_env = {key: value for key, value in env.items() if key.startswith(TOOL_PREFIX)}

        return cls(
            grocy_base_url=base_url,
            api_key=api_key,
            ssl_verify=ssl_verify,
            enable_http_server=enable_http,
            http_host=env.get("HTTP_SERVER_HOST", "0.0.0.0"),
            http_port=http_port,
            response_size_limit=size_limit,
            request_timeout=timeout,
            session_idle_timeout=idle_timeout,
            custom_headers=custom_headers,
            tool_env=tool_env,
        )

    @property
    def api_url(self) -> str:
        return f"{self.grocy_base_url}/api"

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    @property
    def secrets(self) -> tuple[str, ...]:
        """Values that must never appear in logs or client-visible errors."""
        return (self.api_key,) if self.api_key else ()

    def log_summary(self) -> None:
        """Log the effective configuration. The API key is never logged."""
        logger.info(f"Grocy base URL: {self.grocy_base_url}")
        logger.info(f"SSL verification: {'enabled' if self.ssl_verify else 'disabled'}")
        logger.info(f"Authentication: {'API key (' + API_KEY_HEADER + ')' if self.has_api_key else 'none'}")
        if self.enable_http_server:
            logger.info(f"HTTP server: enabled on {self.http_host}:{self.http_port}")
            if self.session_idle_timeout:
                logger.info(f"HTTP session idle timeout: {self.session_idle_timeout:g}s")
            else:
                logger.info("HTTP session idle timeout: disabled")
        else:
            logger.info("HTTP server: disabled")
        logger.info(f"Response size limit: {self.response_size_limit} characters")
        if self.custom_headers:
            logger.info(f"Custom headers: {', '.join(sorted(self.custom_headers))}")


def _parse_int(env: Mapping[str, str], key: str, default: str, errors: list[str]) -> Optional[int]:
    raw = env.get(key, default)
    try:
        return int(raw)
    except ValueError:
        errors.append(f"{key} must be an integer, got '{raw}'")
        return None
