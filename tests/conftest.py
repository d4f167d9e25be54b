"""
Root pytest configuration and fixtures for agui.

Provides common fixtures and test utilities for the test suite.
"""

import os
from pathlib import Path
import sys

import pytest
import responses

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from agui import AgentSession, ReplayTransport  # noqa: E402
from tests.utils.factories import EventFactory  # noqa: E402

AGENT_URL = "https://agent.test/agui"


@pytest.fixture
def agent_url():
    """Test agent endpoint."""
    return AGENT_URL


@pytest.fixture
def events():
    """Event builder."""
    return EventFactory


@pytest.fixture
def weather_run():
    """Wire events of a run that answers and then calls get_weather."""
    return EventFactory.weather_run()


@pytest.fixture
def replay_session(weather_run):
    """Session over a transport that replays the weather run once."""
    return AgentSession(ReplayTransport(weather_run), thread_id="thread-1")


@pytest.fixture(autouse=True)
def clean_environment():
    """Clean environment variables before each test."""
    original_env = os.environ.copy()

    # Remove agui environment variables
    for key in list(os.environ.keys()):
        if key.startswith("AGUI_"):
            del os.environ[key]

    yield

    # Restore original environment
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def mock_requests():
    """Mock HTTP requests using responses library."""
    with responses.RequestsMock() as rsps:
        yield rsps
