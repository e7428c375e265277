"""Shared fixtures for rivetbot tests."""

import pytest

from fakes import FakeGateway, Recorder


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()
