"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the environment before anything imports the global settings, and
provides builders for isolated app instances backed by a fake upstream.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

# Set default env vars that all tests might need
os.environ.setdefault("IMMICH_URL", "http://immich.internal:2283")
os.environ.setdefault("IMMICH_API_KEY", "test-upstream-secret-123")
os.environ.setdefault("DEBUG", "false")

from typing import Callable

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.adapters.upstream.base import AbstractUpstreamClient
from app.adapters.upstream.factory import create_upstream_client
from app.core.app_factory import create_app
from app.core.config import Settings
from tests.fakes import FakeUpstreamClient, make_settings


@pytest.fixture
def fake_upstream() -> FakeUpstreamClient:
    return FakeUpstreamClient()


@pytest.fixture
def build_app() -> Callable[..., FastAPI]:
    """Factory for apps wired to a given upstream client and settings.

    Rate limiting is off unless a limiter is passed in.
    """

    def _build(
        upstream_client: AbstractUpstreamClient | None = None,
        *,
        settings: Settings | None = None,
        rate_limiter=None,
    ) -> FastAPI:
        return create_app(
            settings or make_settings(),
            upstream_client=upstream_client or FakeUpstreamClient(),
            rate_limiter=rate_limiter,
            configure_logs=False,
        )

    return _build


@pytest.fixture
def mock_transport_client() -> Callable[..., TestClient]:
    """TestClient for an app whose upstream is an httpx.MockTransport.

    The handler receives the real outbound httpx.Request, so tests can assert
    on the exact URL and headers the proxy sends.
    """

    def _build(
        handler: Callable[[httpx.Request], httpx.Response],
        *,
        settings: Settings | None = None,
        rate_limiter=None,
    ) -> TestClient:
        cfg = settings or make_settings()
        upstream = create_upstream_client(cfg.upstream, transport=httpx.MockTransport(handler))
        app = create_app(
            cfg,
            upstream_client=upstream,
            rate_limiter=rate_limiter,
            configure_logs=False,
        )
        return TestClient(app)

    return _build
