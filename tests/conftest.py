"""
Pytest configuration and fixtures for hivechain-rpc tests.
"""

import json
import pytest
from unittest.mock import Mock

from network.health import HealthTrackerConfig, NodeHealthTracker
from network.transport import RequestOptions, RetryingTransport


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


class RecordingSleep:
    """Stands in for time.sleep; records delays and advances the fake clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls = []

    def __call__(self, seconds: float):
        self.calls.append(seconds)
        self.clock.advance(seconds * 1000)


def make_response(status_code=200, payload=None, reason="OK", invalid_json=False):
    """Build a mock requests.Response."""
    response = Mock()
    response.status_code = status_code
    response.reason = reason
    if invalid_json:
        response.json.side_effect = json.JSONDecodeError("Expecting value", "", 0)
    else:
        response.json.return_value = payload
    return response


def rpc_result(result, request_id=0):
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper(clock):
    return RecordingSleep(clock)


@pytest.fixture
def tracker(clock):
    """Health tracker with default tunables on the fake clock."""
    return NodeHealthTracker(HealthTrackerConfig(), clock=clock)


@pytest.fixture
def session():
    """Mock requests.Session; configure session.post per test."""
    return Mock()


@pytest.fixture
def transport(session, clock, sleeper):
    return RetryingTransport(session=session, clock=clock, sleep=sleeper)


@pytest.fixture
def request_options():
    return RequestOptions(
        body=json.dumps({"id": 0, "jsonrpc": "2.0", "method": "database_api.get_config", "params": []}),
        headers={"Content-Type": "application/json"},
    )


# Test markers for different test categories
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "concurrency: mark test as a concurrency test"
    )


def pytest_collection_modifyitems(config, items):
    """Add markers based on test paths and names."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        if "concurrent" in item.name or "thread" in item.name:
            item.add_marker(pytest.mark.concurrency)
