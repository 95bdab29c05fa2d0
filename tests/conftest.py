"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, and automatic API
test skipping. All fixtures here are autouse unless noted.
"""

from __future__ import annotations

from contextlib import suppress
import logging
import os

import pytest

# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================

_ISOLATED_PREFIXES = ("GOOGLE_CLOUD_", "GCLOUD_", "VERTEXGEN_")


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_gcp_env(request, monkeypatch):
    """Ensure a clean Google Cloud environment for each test.

    Clears GOOGLE_CLOUD_* and GCLOUD_* env vars so project/location
    resolution is deterministic.
    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(_ISOLATED_PREFIXES):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("google.auth").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# API Test Configuration
# =============================================================================

# Cheapest current models per publisher.
_GEMINI_TEST_MODEL = "gemini-2.0-flash-001"
_CLAUDE_TEST_MODEL = "claude-3-5-haiku@20241022"


@pytest.fixture
def gcp_project():
    """Return GOOGLE_CLOUD_PROJECT or skip the test if unavailable."""
    project = os.getenv("GOOGLE_CLOUD_PROJECT")
    if not project:
        pytest.skip("GOOGLE_CLOUD_PROJECT not set")
    return project


@pytest.fixture
def gemini_test_model():
    """Return the model to use for Gemini API tests."""
    return os.getenv("VERTEXGEN_GEMINI_TEST_MODEL", _GEMINI_TEST_MODEL)


@pytest.fixture
def claude_test_model():
    """Return the model to use for Claude API tests."""
    return os.getenv("VERTEXGEN_CLAUDE_TEST_MODEL", _CLAUDE_TEST_MODEL)
