"""Settings builder for tests."""

from bookdigest.core.config import Settings


def make_settings(**overrides) -> Settings:
    """Settings with no flush throttling and a non-fiction default category."""
    values = {
        "DIGEST_ENV": "test",
        "LLM_PROVIDER": "openai",
        "LLM_API_KEY": "test-key",
        "BOOK_CATEGORY": "non-fiction",
        "OUTPUT_LANGUAGE": "en",
        "STREAM_FLUSH_INTERVAL_SECONDS": 0.0,
    }
    values.update(overrides)
    return Settings(**values)
