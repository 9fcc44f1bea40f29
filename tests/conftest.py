from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from probe_service.config import Settings
from probe_service.main import create_app
from probe_service.probes import LivenessTracker, ProbeContext


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def context(clock) -> ProbeContext:
    return ProbeContext(liveness=LivenessTracker(clock=clock))


@pytest.fixture
def settings() -> Settings:
    return Settings(app_name="probe-test", app_version="9.9.9", app_env="test")


@pytest.fixture
def app(settings, context):
    return create_app(settings=settings, context=context)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
