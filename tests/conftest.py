"""Pytest configuration and fixtures."""

import os

import pytest

from bookdigest.core.config import get_settings
from bookdigest.db.artifact_cache import ArtifactCache
from bookdigest.db.artifact_store import InMemoryArtifactStore
from bookdigest.services.book_pipeline import BookPipeline
from tests.fakes.fake_generator import FakeGenerator
from tests.fakes.fake_settings import make_settings


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["DIGEST_ENV"] = "test"
    os.environ["LLM_PROVIDER"] = "openai"
    os.environ["LLM_API_KEY"] = "test-key"
    os.environ["CACHE_BACKEND"] = "memory"
    get_settings.cache_clear()


@pytest.fixture
def store() -> InMemoryArtifactStore:
    return InMemoryArtifactStore()


@pytest.fixture
def cache(store) -> ArtifactCache:
    return ArtifactCache(store)


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def pipeline(generator, cache) -> BookPipeline:
    settings = make_settings()
    return BookPipeline(generator, cache, settings_provider=lambda: settings)
