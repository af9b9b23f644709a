"""Shared test fixtures for the Concierge test suite.

Services and tools run against the in-memory fakes in ``fakes.py``, so no
Postgres, OpenAI or SerpAPI access is needed.
"""

from __future__ import annotations

import os

# Pin the environment before any module reads settings
os.environ["APP_ENV"] = "test"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["OPENAI_API_KEY"] = "test-openai-key"
os.environ.pop("SERPAPI_API_KEY", None)
os.environ.pop("WORKFLOW_CALLBACK_SECRET", None)

from collections.abc import Generator  # noqa: E402

import pytest  # noqa: E402

from fakes import FakeChatStore, FakeLLMService, FakeSerpApi  # noqa: E402

from concierge.core.constants import Settings, clear_settings_cache  # noqa: E402
from concierge.models.chat_models import UserInfo  # noqa: E402

# ============================================================================
# Test Isolation
# ============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Keep cached settings from leaking between tests."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app_env="test",
        jwt_secret="test-jwt-secret",
        openai_api_key="test-openai-key",
        serpapi_api_key="test-serpapi-key",
        workflow_webhook_urls={"n8n-assistant": "https://hooks.example.com/assistant"},
        turn_timeout_seconds=5.0,
    )


@pytest.fixture
def user() -> UserInfo:
    return UserInfo(id="user-1", external_id="idp|alice", email="alice@example.com")


@pytest.fixture
def other_user() -> UserInfo:
    return UserInfo(id="user-2", external_id="idp|bob", email="bob@example.com")


@pytest.fixture
def store(user: UserInfo) -> FakeChatStore:
    fake = FakeChatStore()
    fake.add_user(user, profile={})
    return fake


@pytest.fixture
def llm() -> FakeLLMService:
    return FakeLLMService()


@pytest.fixture
def serpapi() -> FakeSerpApi:
    return FakeSerpApi()
