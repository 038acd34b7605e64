"""The unit of transfer passed from the source to every sink."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from pipebridge.models.channels import BoundaryTag


class Chunk(BaseModel):
    """One discrete read from the source channel.

    The boundary tag is set by the channel that produced the chunk and
    travels with it unchanged.  ``text`` records that the payload arrived as
    a WebSocket text frame (UTF-8 encoded here).
    """

    model_config = ConfigDict(frozen=True)

    payload: bytes
    boundary: BoundaryTag
    sequence: int = 0
    text: bool = False

    @property
    def size(self) -> int:
        return len(self.payload)

    def __len__(self) -> int:
        return len(self.payload)
