"""Pytest configuration - minimal for unittest-based tests."""

import os

# broker.main reads settings at import; keep a developer's .env secrets out of tests
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SITE_URL", "https://app.example.com")
os.environ.setdefault("SECRET_KEY", "test-session-secret")


def pytest_configure(config):
    """Register markers used by the suite."""
    config.addinivalue_line(
        "markers",
        "asyncio: mark test as async"
    )
