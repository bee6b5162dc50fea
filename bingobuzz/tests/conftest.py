"""pytest configuration file."""

import pytest, os, logging

from ..constants import FRESH_ENV_VAR
from ..engine.backends import BACKEND_ENV_VAR
from ..logging_utils import AUDIO_TRACE_ENV_VAR


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (may take several seconds)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


@pytest.fixture(autouse=True, scope="session")
def _silence_logs():
    os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")
    logging.getLogger("asyncio").setLevel(logging.ERROR)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    yield


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    # Developer shells may carry these; tests assume defaults
    monkeypatch.delenv(FRESH_ENV_VAR, raising=False)
    monkeypatch.delenv(BACKEND_ENV_VAR, raising=False)
    monkeypatch.delenv(AUDIO_TRACE_ENV_VAR, raising=False)
    yield
