"""Relay configuration — env-driven, overridable from the CLI.

Settings come from ``PIPEBRIDGE_*`` environment variables or a ``.env``
file in the working directory.  The CLI layers its own options on top with
``settings.model_copy(update=...)``.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RelaySettings(BaseSettings):
    """Tunables for channels, the fanout router and session shutdown.

    Examples
    --------
    Override via environment::

        export PIPEBRIDGE_QUEUE_CAPACITY=256
        export PIPEBRIDGE_LOG_LEVEL=DEBUG
        export PIPEBRIDGE_STDIN_MODE=lines
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PIPEBRIDGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "WARNING"

    # Fanout router
    queue_capacity: int = Field(default=64, ge=1)
    drain_timeout: float = Field(default=2.0, ge=0.0)

    # Connection manager: 2 attempts = the initial try plus one retry
    connect_attempts: int = Field(default=2, ge=1)

    # Stdio
    read_size: int = Field(default=65536, ge=1)
    stdin_mode: Literal["stream", "lines"] = "stream"
    stdout_newline: bool = False

    # UDP
    udp_max_datagram: int = Field(default=65507, ge=1, le=65535)
    udp_receive_buffer: int = Field(default=1024, ge=1)

    # WebSocket
    ws_max_message_size: int | None = 2**20
    ws_ping_interval: float | None = 20.0
    ws_open_timeout: float | None = 10.0
    ws_accept_timeout: float | None = None
    ws_frame_mode: Literal["auto", "text", "binary"] = "auto"


# Module-level singleton: import as `from pipebridge.config import settings`
settings = RelaySettings()
