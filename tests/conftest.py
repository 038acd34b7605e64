"""Shared test fixtures for pipebridge."""

from __future__ import annotations

import pytest

from pipebridge.config import RelaySettings


@pytest.fixture
def relay_settings() -> RelaySettings:
    """Settings with short timeouts, independent of the environment."""
    return RelaySettings(
        _env_file=None,
        queue_capacity=8,
        drain_timeout=1.0,
        connect_attempts=2,
        ws_open_timeout=5.0,
        ws_ping_interval=None,
    )


@pytest.fixture
def payloads() -> list[bytes]:
    """Twenty distinct payloads, including NUL and non-UTF-8 bytes."""
    return [bytes([i]) * (i + 1) + b"\x00\xff" for i in range(20)]
