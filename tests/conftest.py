"""
Test configuration.

Settings are read once at import time, so the environment is pinned here
before anything under ``app`` is imported. Tests run against a file-backed
SQLite database so that separate sessions get separate connections and
transactions, as they do in a deployment.
"""

import os
import tempfile

_db_dir = tempfile.mkdtemp(prefix="duelchat-tests-")

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ["PROVIDER_MODE"] = "mock"
os.environ["BILLING_MODE"] = "test"
os.environ["BILLING_KEY_ID"] = "rzp_test_key"
os.environ["BILLING_KEY_SECRET"] = "rzp_test_secret"
os.environ["SUBSCRIPTION_PERIOD_DAYS"] = "30"
os.environ["DEFAULT_PLAN"] = "A1"
os.environ["PROVIDER_TIMEOUT_SECONDS"] = "10"

import pytest
import pytest_asyncio

from app.db import engine
from app.services.rate_limiter import get_rate_limiter


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    get_rate_limiter().reset()
    yield
    get_rate_limiter().reset()


@pytest_asyncio.fixture(autouse=True)
async def dispose_engine():
    """Each test runs in its own event loop; drop pooled connections between tests."""
    yield
    await engine.dispose()
