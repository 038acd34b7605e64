"""pipebridge: relay a byte/message stream from one endpoint to many.

Bridges three transports that otherwise do not talk to each other:
standard input/output, UDP datagrams and WebSocket frames.

  - One source channel, one or more sink channels (argument order)
  - Per-sink bounded queues: stdio sinks block the source, UDP and
    WebSocket sinks drop their oldest pending chunk
  - A failing sink is removed without disturbing the others
  - Datagram and frame boundaries survive the trip; stdio is a raw stream
"""

__version__ = "0.1.0"
__description__ = "Stdio/UDP/WebSocket fanout relay"

from pipebridge.core.session import RelaySession
from pipebridge.routing.fanout import FanoutRouter
from pipebridge.cli.app import app as cli

__all__ = ["RelaySession", "FanoutRouter", "cli", "__version__"]
