"""Connection Manager — turns descriptors into open channels.

Each initial connection is attempted ``connect_attempts`` times (default: the
first try plus one immediate retry, no backoff).  There is no reconnection
once a channel is established; a dropped channel stays dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence

from pipebridge.channels import Channel
from pipebridge.channels.errors import ChannelConnectionError, ChannelError
from pipebridge.channels.stdio import StdioChannel
from pipebridge.channels.udp import UdpChannel
from pipebridge.channels.websocket import WebSocketChannel
from pipebridge.config import RelaySettings
from pipebridge.models.channels import ChannelDescriptor, ChannelKind

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[ChannelDescriptor], Channel]


class ConnectionManager:
    """Builds and opens channels for descriptors.

    Parameters
    ----------
    settings:
        Relay settings used to configure each channel.  Defaults to a fresh
        ``RelaySettings()`` (environment-driven).
    factory:
        Replaces ``create_channel``; lets tests inject fake channels.
    """

    def __init__(
        self,
        settings: RelaySettings | None = None,
        *,
        factory: ChannelFactory | None = None,
    ) -> None:
        self._settings = settings if settings is not None else RelaySettings()
        self._factory = factory if factory is not None else self.create_channel

    @property
    def settings(self) -> RelaySettings:
        return self._settings

    # ------------------------------------------------------------------
    # Channel construction
    # ------------------------------------------------------------------

    def create_channel(self, descriptor: ChannelDescriptor) -> Channel:
        """Build an unopened channel for *descriptor*."""
        s = self._settings
        if descriptor.kind == ChannelKind.STDIO:
            return StdioChannel(
                descriptor,
                read_size=s.read_size,
                line_mode=s.stdin_mode == "lines",
                append_newline=s.stdout_newline,
            )
        if descriptor.kind == ChannelKind.UDP:
            return UdpChannel(
                descriptor,
                max_datagram=s.udp_max_datagram,
                receive_buffer=s.udp_receive_buffer,
            )
        if descriptor.kind == ChannelKind.WEBSOCKET:
            return WebSocketChannel(
                descriptor,
                max_message_size=s.ws_max_message_size,
                ping_interval=s.ws_ping_interval,
                open_timeout=s.ws_open_timeout,
                accept_timeout=s.ws_accept_timeout,
                frame_mode=s.ws_frame_mode,
            )
        raise ValueError(f"unsupported channel kind: {descriptor.kind!r}")

    # ------------------------------------------------------------------
    # Connecting
    # ------------------------------------------------------------------

    async def connect(self, descriptor: ChannelDescriptor) -> Channel:
        """Open a channel for *descriptor*, retrying the initial attempt.

        Raises
        ------
        ChannelConnectionError
            If every attempt fails.
        """
        attempts = self._settings.connect_attempts
        last_error: ChannelConnectionError | None = None

        for attempt in range(1, attempts + 1):
            channel = self._factory(descriptor)
            try:
                await channel.open()
            except ChannelConnectionError as exc:
                last_error = exc
                logger.warning(
                    "Connect %s failed (attempt %d/%d): %s",
                    descriptor.display_name,
                    attempt,
                    attempts,
                    exc,
                )
                await channel.close()
                continue
            except BaseException:
                # Cancelled mid-open (shutdown) or an unexpected error.
                await _close_quietly([channel])
                raise
            logger.info("Connected %s (%s).", descriptor.display_name, descriptor.kind.value)
            return channel

        raise ChannelConnectionError(
            f"{descriptor.display_name}: giving up after {attempts} attempt(s): {last_error}"
        ) from last_error

    async def connect_sinks(
        self, descriptors: Sequence[ChannelDescriptor]
    ) -> list[Channel | ChannelConnectionError]:
        """Open all sinks concurrently.

        A server-role sink waiting for its peer does not hold up the others.
        Returns one entry per descriptor, in order: the open channel or the
        ``ChannelConnectionError`` that excluded it.

        If the call is cancelled, or any sink fails with something other than
        ``ChannelConnectionError``, the sinks that did open are closed before
        the exception propagates.
        """
        tasks = [asyncio.ensure_future(self.connect(d)) for d in descriptors]
        try:
            results = await asyncio.gather(*tasks, return_exceptions=True)
        except BaseException:
            # gather has cancelled the unfinished connects; wait for them to unwind.
            await asyncio.gather(*tasks, return_exceptions=True)
            await _close_quietly(
                t.result() for t in tasks if not t.cancelled() and t.exception() is None
            )
            raise

        opened = [r for r in results if not isinstance(r, BaseException)]
        for result in results:
            if isinstance(result, BaseException) and not isinstance(
                result, ChannelConnectionError
            ):
                await _close_quietly(opened)
                raise result

        outcome: list[Channel | ChannelConnectionError] = []
        for descriptor, result in zip(descriptors, results):
            if isinstance(result, ChannelConnectionError):
                logger.error("Sink %s excluded: %s", descriptor.display_name, result)
            outcome.append(result)
        return outcome


async def _close_quietly(channels: Iterable[Channel]) -> None:
    for channel in channels:
        try:
            await channel.close()
        except ChannelError as exc:
            logger.debug("Close of %s failed: %s", channel.name, exc)
