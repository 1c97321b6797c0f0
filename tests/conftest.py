"""Shared fixtures for the DocVoice test suite."""

import pytest

from docvoice.app.telemetry import TurnTelemetryLogger
from tests.fakes import FakeReplyGenerator


@pytest.fixture
def reply():
    return FakeReplyGenerator()


@pytest.fixture
def telemetry(tmp_path):
    return TurnTelemetryLogger(log_dir=str(tmp_path / "logs"))
