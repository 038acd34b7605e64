"""SinkLane — one sink channel, its bounded queue and its writer task.

The lane decouples a sink from the source's read rate.  When the queue is
full, a ``BLOCK`` lane makes the producer wait and a ``DROP_OLDEST`` lane
discards the oldest pending chunk in favour of the new one.

A write failure marks the lane failed, discards whatever is still queued
and stops the writer.  The lane is never written to again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from pipebridge.channels import Channel
from pipebridge.channels.errors import ChannelError, PayloadTooLargeError
from pipebridge.models.channels import ChannelKind, ChannelState
from pipebridge.models.chunks import Chunk
from pipebridge.models.session import SinkPolicy, SinkReport, policy_for_kind

logger = logging.getLogger(__name__)

_END = object()


class SinkLane:
    """Feeds one sink channel from a bounded FIFO.

    Parameters
    ----------
    channel:
        An open, writable channel.  The lane takes ownership and closes it
        when the writer exits.
    capacity:
        Maximum queued chunks.
    policy:
        Queue-full behaviour; defaults to ``policy_for_kind(channel.kind)``.
    on_failed:
        Called once, synchronously, when the lane fails.
    """

    def __init__(
        self,
        channel: Channel,
        *,
        capacity: int = 64,
        policy: SinkPolicy | None = None,
        on_failed: Callable[[SinkLane], None] | None = None,
    ) -> None:
        self._channel = channel
        self._policy = policy if policy is not None else policy_for_kind(channel.kind)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._on_failed = on_failed
        self._task: asyncio.Task | None = None
        self._failed = False
        self._finishing = False
        self.delivered = 0
        self.dropped = 0
        self.oversized = 0
        self.error: str | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def channel(self) -> Channel:
        return self._channel

    @property
    def name(self) -> str:
        return self._channel.name

    @property
    def kind(self) -> ChannelKind:
        return self._channel.kind

    @property
    def policy(self) -> SinkPolicy:
        return self._policy

    @property
    def is_open(self) -> bool:
        """``False`` once the sink has failed; it then receives nothing more."""
        return not self._failed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"pipebridge-sink:{self.name}")

    async def offer(self, chunk: Chunk) -> None:
        """Queue *chunk* for delivery according to the lane's policy."""
        if self._failed:
            return
        if self._policy == SinkPolicy.BLOCK:
            await self._queue.put(chunk)
            return
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            logger.debug(
                "SinkLane %s: queue full, dropped oldest chunk (%d dropped).",
                self.name,
                self.dropped,
            )
        self._queue.put_nowait(chunk)

    def finish(self) -> None:
        """No more chunks will be offered; deliver what is queued, then stop."""
        self._finishing = True
        try:
            self._queue.put_nowait(_END)
        except asyncio.QueueFull:
            # The writer re-checks ``_finishing`` once the queue empties.
            pass

    # ------------------------------------------------------------------
    # Writer side
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            while not self._failed:
                if self._finishing and self._queue.empty():
                    break
                item = await self._queue.get()
                if item is _END:
                    break
                await self._deliver(item)
        finally:
            await self._release()

    async def _deliver(self, chunk: Chunk) -> None:
        try:
            await self._channel.write(chunk)
        except PayloadTooLargeError as exc:
            self.oversized += 1
            logger.warning("SinkLane %s: chunk %d dropped, %s.", self.name, chunk.sequence, exc)
        except ChannelError as exc:
            self._fail(exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("SinkLane %s: unexpected write error.", self.name)
            self._fail(exc)
        else:
            self.delivered += 1

    def _fail(self, exc: Exception) -> None:
        self._failed = True
        self.error = str(exc) or type(exc).__name__
        logger.error("Sink %s failed and was removed from routing: %s", self.name, self.error)
        # Release a producer blocked on a full queue.
        while not self._queue.empty():
            self._queue.get_nowait()
        if self._on_failed is not None:
            self._on_failed(self)

    async def _release(self) -> None:
        try:
            await self._channel.close()
        except ChannelError as exc:
            logger.debug("SinkLane %s: close failed: %s", self.name, exc)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def report(self) -> SinkReport:
        state = ChannelState.FAILED if self._failed else self._channel.state
        return SinkReport(
            name=self.name,
            kind=self.kind,
            policy=self._policy,
            state=state,
            delivered=self.delivered,
            dropped=self.dropped,
            oversized=self.oversized,
            error=self.error,
        )

    def __repr__(self) -> str:
        return (
            f"SinkLane(name={self.name!r}, policy={self._policy.value}, "
            f"open={self.is_open}, pending={self.pending})"
        )
