"""Pytest configuration and fixtures."""

import shutil
import tempfile

import pytest

from editor_pulse.config import Settings
from editor_pulse.models import ActivityEvent

T0 = 1_700_000_000.0


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    temp_path = tempfile.mkdtemp()
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def settings():
    """Settings with an API key and fast delivery."""
    return Settings(api_key="waka_0000-test-key", flush_interval=1)


@pytest.fixture
def sample_events():
    """A short editing session across two files."""
    return [
        ActivityEvent(file_path="/work/app/main.py", timestamp=T0, project="app", language="Python"),
        ActivityEvent(file_path="/work/app/main.py", timestamp=T0 + 30, lineno=12, cursor_pos=4),
        ActivityEvent(file_path="/work/app/main.py", timestamp=T0 + 45, is_write=True),
        ActivityEvent(file_path="/work/app/util.py", timestamp=T0 + 50),
    ]


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "unit: mark test as unit test")
