"""Chunk routing: per-sink lanes and the fanout router."""

from pipebridge.routing.fanout import FanoutRouter
from pipebridge.routing.lanes import SinkLane

__all__ = ["FanoutRouter", "SinkLane"]
