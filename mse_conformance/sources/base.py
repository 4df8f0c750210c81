"""The contract shared by segment sources and their decorators."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from mse_conformance.models.host import SourceBuffer


class ChunkSource(Protocol):
    """Delivers an initialization chunk followed by a restartable run of media chunks."""

    @property
    def exhausted(self) -> bool:
        """Return whether the cursor reached the end of the resource."""

    async def init(self, time: float | None = None) -> bytes:
        """Return the initialization chunk and position the cursor at time."""

    async def pull(self) -> bytes:
        """Return the next media chunk and advance the cursor past it."""

    def seek(self, time: float, buffer: SourceBuffer | None = None) -> None:
        """Reset the cursor to time, aborting buffer first when given."""
