"""Shared test fixtures for the Studio Assistant test suite."""

from __future__ import annotations

import os

import httpx
import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py sees test credentials.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("MINDBODY_API_KEY", "test-mindbody-key-456")
    os.environ.setdefault("MINDBODY_SITE_ID", "-99")


class FakeClock:
    """Manually advanced clock for the cache and token manager."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, delta):
        self.now = self.now + delta


@pytest.fixture
def fake_clock():
    return FakeClock


@pytest.fixture
def mock_http():
    """Factory: an ``httpx.AsyncClient`` whose traffic goes to *handler*.

    The returned client records every request on ``client.requests``.
    """

    def _make(handler):
        requests: list[httpx.Request] = []

        async def recording(request: httpx.Request):
            requests.append(request)
            result = handler(request)
            if hasattr(result, "__await__"):
                result = await result
            return result

        client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
        client.requests = requests
        return client

    return _make
