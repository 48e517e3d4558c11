"""Shared test fixtures for the entitlement client test suite."""

import json
import os
import threading
from datetime import datetime, timezone

import pytest

# Must be set before any config import
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DEPLOYMENT_ENV", "prod")

from entitlement_client.database import create_session_factory
from entitlement_client.errors import TransportFailure
from entitlement_client.store import EntitlementStore
from entitlement_client.transport import TransportResponse


def success_response(meta=None, status=200) -> TransportResponse:
    body = {"result": "success"}
    if meta is not None:
        body["licensedItemMeta"] = meta
    return TransportResponse(status=status, body=json.dumps(body))


def error_response(message=None, status=200) -> TransportResponse:
    body = {"result": "error"}
    if message is not None:
        body["error"] = {"message": message}
    return TransportResponse(status=status, body=json.dumps(body))


class ScriptedTransport:
    """Returns queued responses in order, repeating the last one."""

    def __init__(self, *responses):
        self.responses = list(responses) or [success_response()]
        self.calls = []
        self._lock = threading.Lock()

    def post_json(self, url, headers, body):
        with self._lock:
            self.calls.append({"url": url, "headers": headers, "body": body})
            if len(self.responses) > 1:
                response = self.responses.pop(0)
            else:
                response = self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def queue(self, *responses):
        self.responses = list(responses)


class FakeTimers:
    """In-memory recurring job registry."""

    def __init__(self):
        self.jobs = {}
        self.schedule_calls = 0

    def schedule_recurring(self, name, interval, callback):
        self.schedule_calls += 1
        self.jobs[name] = (interval, callback)

    def cancel_recurring(self, name):
        self.jobs.pop(name, None)

    def is_scheduled(self, name):
        return name in self.jobs

    def fire(self, name):
        _, callback = self.jobs[name]
        callback()


class FakeClock:
    def __init__(self, now=None):
        self.now = now or datetime(2026, 10, 16, 1, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, delta):
        self.now = self.now + delta


@pytest.fixture
def store():
    """A store backed by a fresh in-memory database."""
    return EntitlementStore(create_session_factory("sqlite://"))


@pytest.fixture
def transport():
    return ScriptedTransport()


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport_error():
    return TransportFailure("connection refused")
