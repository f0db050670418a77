"""Shared test doubles and fake-server fixtures."""

import threading
from datetime import datetime, timedelta, timezone
from http.server import HTTPServer

import pytest

from mindsight_agent.collector.base import QueryBackend
from mindsight_agent.errors import BackendConnectError, QueryError
from mindsight_agent.metrics import Sample
from mindsight_agent.mock.fake_api_server import FakeAPIState, make_handler
from mindsight_agent.mock.fake_prometheus_server import _QueryHandler

EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_samples(n: int, name: str = "up", start: float = 0.0):
    return [
        Sample(labels={"__name__": name, "idx": str(start + i)}, value=float(i), timestamp=1700000000.0 + i)
        for i in range(n)
    ]


class FakeBackend(QueryBackend):
    """Answers from a shared query -> outcome table and records every call."""

    def __init__(self, endpoint: str, outcomes: dict):
        self.endpoint = endpoint
        self._outcomes = outcomes
        self.calls = []
        self.closed = False

    def query(self, query: str):
        self.calls.append(query)
        outcome = self._outcomes.get(query, 1)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, int):
            if outcome == 0:
                raise QueryError("empty result vector")
            return make_samples(outcome, name=query)
        return list(outcome)

    def name(self) -> str:
        return f"Fake ({self.endpoint})"

    def close(self):
        self.closed = True


class FakeConnector:
    """Connection factory handed to the cache in place of PrometheusClient.

    `outcomes` maps query -> int (that many samples), a list of samples,
    or an exception to raise. Unknown queries return one sample.
    """

    def __init__(self):
        self.outcomes = {}
        self.built = []
        self.fail_on = set()

    def __call__(self, endpoint: str) -> FakeBackend:
        if endpoint in self.fail_on:
            raise BackendConnectError(f"new prometheus client connection: {endpoint}")
        backend = FakeBackend(endpoint, self.outcomes)
        self.built.append(backend)
        return backend

    def total_calls(self) -> int:
        return sum(len(b.calls) for b in self.built)


class FakeClock:
    """Settable wall clock for now_fn."""

    def __init__(self, start: datetime = EPOCH):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeMonotonic:
    """Settable monotonic clock for the scheduler."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic():
    return FakeMonotonic()


def _start_test_server(handler) -> HTTPServer:
    server = HTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server


def _server_url(server: HTTPServer) -> str:
    host, port = server.server_address[:2]
    return f"http://{host}:{port}"


@pytest.fixture
def prometheus_url():
    server = _start_test_server(_QueryHandler)
    try:
        yield _server_url(server)
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture
def api_state():
    return FakeAPIState()


@pytest.fixture
def api_url(api_state):
    server = _start_test_server(make_handler(api_state))
    try:
        yield _server_url(server) + "/"
    finally:
        server.shutdown()
        server.server_close()
