"""Session report rendering (Rich, stderr)."""

from pipebridge.monitor.renderer import SessionRenderer

__all__ = ["SessionRenderer"]
