import os

import pytest
from typer.testing import CliRunner

from gisops.domain.events.api_events import EventDispatcher
from gisops.domain.models.common import BackoffPolicy
from gisops.infrastructure.config.settings import clear_test_config
from gisops.infrastructure.resilience.api_retry import ApiRetryService
from gisops.infrastructure.resilience.rate_limiter import RateLimiter
from tests.fakes import FakeClock, ScriptedTransport


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def dispatcher() -> EventDispatcher:
    return EventDispatcher()


@pytest.fixture
def policy() -> BackoffPolicy:
    return BackoffPolicy(base_interval=0.1, max_interval=1.0, max_retries=3)


@pytest.fixture
def retry_service(transport, clock, policy, dispatcher) -> ApiRetryService:
    """Retry service whose rate limiter and backoff never really sleep."""
    limiter = RateLimiter(capacity=1000, interval=1.0, clock=clock, sleep=clock.sleep)
    return ApiRetryService(transport, limiter, policy=policy, dispatcher=dispatcher, sleep=clock.sleep, clock=clock)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keeps user configuration and GISOPS_* variables out of the tests."""
    for name in list(os.environ):
        if name.startswith("GISOPS_"):
            monkeypatch.delenv(name)
    clear_test_config()
    yield
    clear_test_config()


# --- CLI fixtures ---

@pytest.fixture
def mock_console_display(mocker):
    """Replaces the rich console display used by the CLI with a MagicMock."""
    display = mocker.MagicMock()
    mocker.patch("gisops.main.ConsoleDisplay", return_value=display)
    return display


@pytest.fixture
def cli_transport(mocker) -> ScriptedTransport:
    """Routes every CLI request to an in-memory transport."""
    scripted = ScriptedTransport()
    mocker.patch("gisops.main.build_transport", return_value=scripted)
    return scripted
