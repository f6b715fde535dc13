"""Shared test fixtures and configuration for chrome-gather tests."""

import pytest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock
import sys

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gather.capture.recorder import EventRecorder
from gather.models.capture import EventLog
from tests.helpers import FakeCDPSession


@pytest.fixture
def fake_session():
    """Protocol session double with no bodies available."""
    return FakeCDPSession()


@pytest.fixture
def recorder():
    """Recorder over a fresh event log."""
    return EventRecorder(EventLog())


@pytest.fixture
def mock_page():
    """Mock Playwright page with a protocol session factory."""
    page = AsyncMock()
    page.on = MagicMock()
    page.context = MagicMock()
    page.context.new_cdp_session = AsyncMock(return_value=FakeCDPSession())
    return page


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
