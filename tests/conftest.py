"""
Pytest configuration and fixtures for polyalgo tests.

Provides an injectable clock, a temp-dir order store and a session
manager wired to fake credentials, so no test touches the network or
sleeps.
"""
import pytest

from core.retry import RetryPolicy
from core.trading_session import TradingSessionManager
from infra.order_history import OrderHistoryLog
from infra.order_store import JsonAlgoOrderStore
from tests.helpers import (
    TEST_PRIVATE_KEY,
    TEST_PROXY_ADDRESS,
    FakeCredentialsClient,
    FixedClock,
)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def fast_retry():
    """Retry policy with zero delays (no sleeping in tests)."""
    return RetryPolicy(max_retries=2, initial_delay_ms=0, max_delay_ms=0)


@pytest.fixture
def store(tmp_path):
    return JsonAlgoOrderStore(str(tmp_path / "algo_orders.json"))


@pytest.fixture
def history(tmp_path):
    return OrderHistoryLog(str(tmp_path / "order_history.jsonl"))


@pytest.fixture
def credentials_client():
    return FakeCredentialsClient()


@pytest.fixture
def session_manager(credentials_client, clock, fast_retry):
    return TradingSessionManager(credentials_client, clock=clock, retry_policy=fast_retry)


@pytest.fixture
def active_session(session_manager):
    """Session manager with a live session for the test key."""
    session_manager.initialize(TEST_PRIVATE_KEY, proxy_address=TEST_PROXY_ADDRESS)
    return session_manager
