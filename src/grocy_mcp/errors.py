"""Error types and protocol error constructors."""

import logging
from typing import Iterable

from mcp.shared.exceptions import McpError
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    ErrorData,
)

# Not exported by every mcp release; value fixed by the protocol.
RESOURCE_NOT_FOUND = -32002


class ConfigurationError(Exception):
    """Fatal misconfiguration detected at startup."""


def _error(code: int, message: str) -> McpError:
    return McpError(ErrorData(code=code, message=message))


def invalid_params(message: str) -> McpError:
    return _error(INVALID_PARAMS, message)


def invalid_request(message: str) -> McpError:
    return _error(INVALID_REQUEST, message)


def method_not_found(message: str) -> McpError:
    return _error(METHOD_NOT_FOUND, message)


def internal_error(message: str) -> McpError:
    return _error(INTERNAL_ERROR, message)


def resource_not_found(message: str) -> McpError:
    return _error(RESOURCE_NOT_FOUND, message)


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every secret value in ``text`` with ``***``."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    return text


class RedactingFilter(logging.Filter):
    """Strips secret values from every record passing through a logger."""

    def __init__(self, secrets: Iterable[str]):
        super().__init__()
        self.secrets = tuple(s for s in secrets if s)

    def filter(self, record: logging.LogRecord) -> bool:
        if self.secrets:
            record.msg = redact(record.getMessage(), self.secrets)
            record.args = ()
        return True


def install_log_redaction(logger: logging.Logger, secrets: Iterable[str]) -> RedactingFilter:
    """Attach a :class:`RedactingFilter` to ``logger``, replacing any earlier one."""
    for existing in [f for f in logger.filters if isinstance(f, RedactingFilter)]:
        logger.removeFilter(existing)
    log_filter = RedactingFilter(secrets)
    logger.addFilter(log_filter)
    return log_filter
