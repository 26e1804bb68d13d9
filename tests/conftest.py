"""Shared pytest configuration and fixtures."""

from collections.abc import AsyncGenerator, Generator
from typing import Any
from unittest.mock import patch

import pytest
import pytest_asyncio

from warroom.config import Settings, get_settings
from warroom.store.sqlite import SqliteIncidentStore


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run e2e tests that hit real services (requires .env with valid credentials)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="Need --run-e2e flag to run")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _no_dotenv(request: pytest.FixtureRequest) -> Generator[None]:
    """Block .env loading so a developer's local store or AI key never leaks into tests.

    Sets Settings.model_config['env_file'] = None before each test (except e2e).
    Tests that use mock_settings bypass Settings() entirely, so this is transparent.
    """
    if "e2e" in request.keywords:
        yield
        return

    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def mock_settings() -> Generator[Any]:
    """Provide fake settings so tests don't need a .env file.

    Patches get_settings at every import site so cached references are overridden.
    The store is local in-memory SQLite and no AI key is configured.
    """
    fake_settings = type(
        "FakeSettings",
        (),
        {
            # Incident store
            "supabase_url": "",
            "supabase_anon_key": "",
            "store_db_path": ":memory:",
            # AI provider
            "llm_provider": "openai",
            "openai_api_key": "",
            "openai_model": "gpt-4o-mini",
            "openai_base_url": "",
            "anthropic_api_key": "",
            "anthropic_model": "claude-sonnet-4-5",
            # Dashboard timing (short so tests don't wait)
            "recovery_dwell_seconds": 0.05,
            "incident_poll_seconds": 60.0,
            "service_poll_seconds": 60.0,
            "log_poll_seconds": 60.0,
            "action_delay_seconds": 0.0,
            "dashboard_user": "commander",
        },
    )()
    with (
        patch("warroom.config.get_settings", return_value=fake_settings),
        patch("warroom.store.factory.get_settings", return_value=fake_settings),
        patch("warroom.dashboard.session.get_settings", return_value=fake_settings),
        patch("warroom.diagnosis.query_doctor.get_settings", return_value=fake_settings),
        patch("warroom.api.main.get_settings", return_value=fake_settings),
    ):
        yield fake_settings


@pytest_asyncio.fixture
async def store() -> AsyncGenerator[SqliteIncidentStore]:
    """A fresh in-memory SQLite incident store."""
    db = SqliteIncidentStore(":memory:")
    try:
        yield db
    finally:
        await db.close()
