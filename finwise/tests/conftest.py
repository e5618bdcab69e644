"""Shared fixtures for FinWise tests."""

import pytest

from finwise.config import Settings
from finwise.db.sqlite import Database
from finwise.services.categorizer import CategoryClassifier


@pytest.fixture
def config(tmp_path) -> Settings:
    """Settings isolated from the developer's .env, with model calls off."""
    return Settings(
        _env_file=None,
        data_dir=tmp_path,
        llm_enabled=False,
        vision_enabled=False,
        llm_provider="ollama",
        llm_call_timeout=1.0,
        llm_max_retries=1,
        base_currency="INR",
        batch_rate_limit_ms=0,
        batch_max_items=50,
        batch_time_budget_seconds=30.0,
        rate_refresh_cooldown_seconds=300.0,
    )


@pytest.fixture
def db(tmp_path) -> Database:
    return Database(tmp_path / "test.db")


@pytest.fixture
def classifier() -> CategoryClassifier:
    return CategoryClassifier()
