"""
Shared fixtures for the load driver tests

Available fixtures:
- run_config: seeded RunConfig with the default stages
- fake_client: stand-in for locust's HttpSession, answers with a configurable response
- recorder: empty CheckRecorder
"""

from datetime import datetime, timezone

import pytest

from config import RunConfig
from driver import CheckRecorder
from payload import IterationContext


class FakeResponse:
    """Mimics locust's ResponseContextManager for catch_response=True requests"""

    def __init__(self, status_code=200, text="", error=None):
        self.status_code = status_code
        self.text = text
        self.error = error
        self.succeeded = None
        self.failure_message = None

    def success(self):
        self.succeeded = True

    def failure(self, exc):
        self.succeeded = False
        self.failure_message = str(exc)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeClient:
    def __init__(self, response=None):
        self.response = response or FakeResponse()
        self.calls = []

    def post(self, path, **kwargs):
        self.calls.append((path, kwargs))
        return self.response


@pytest.fixture
def run_config():
    return RunConfig(seed=42)


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def recorder():
    return CheckRecorder()


@pytest.fixture
def fixed_time():
    return datetime(2024, 5, 1, 12, 30, 45, 123000, tzinfo=timezone.utc)


@pytest.fixture
def ctx(fixed_time):
    return IterationContext(vu_id=3, iteration=7, timestamp=fixed_time)
