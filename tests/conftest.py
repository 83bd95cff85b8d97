"""
Shared fixtures for the Grocy MCP Server tests.
"""

import sys
from pathlib import Path

import httpx
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from grocy_mcp.config import Settings
from grocy_mcp.dispatch import build_app_context

API_KEY = "test-api-key-7f3a9c"
BASE_URL = "http://grocy.test"


class FakeGrocy:
    """Stand-in Grocy instance behind an ``httpx.MockTransport``.

    Routes are keyed by ``(method, path)`` where path includes ``/api``.
    A route is either ``(status, json_body)``, a callable taking the
    request, or an httpx exception class to raise.
    """

    def __init__(self):
        self.routes = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, status: int = 200, json=None):
        self.routes[(method, path)] = (status, json)

    def fail(self, method: str, path: str, exc_class):
        self.routes[(method, path)] = exc_class

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error_message": f"No route {request.method} {request.url.path}"})
        if isinstance(route, type) and issubclass(route, Exception):
            raise route("simulated failure", request=request)
        if callable(route):
            return route(request)
        status, body = route
        return httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def calls(self, method: str = None) -> list[tuple[str, str]]:
        return [(r.method, r.url.path) for r in self.requests if method is None or r.method == method]


def make_settings(**env) -> Settings:
    environ = {"GROCY_BASE_URL": BASE_URL, "GROCY_APIKEY_VALUE": API_KEY}
    environ.update(env)
    return Settings.from_env(environ)


@pytest.fixture
def grocy():
    return FakeGrocy()


@pytest.fixture
def make_context(grocy):
    """Factory: build an app context from extra env vars, wired to ``grocy``."""
    def factory(**env):
        return build_app_context(make_settings(**env), transport=grocy.transport)
    return factory
