"""Helpers to await events fired by host objects."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Self

if TYPE_CHECKING:
    from types import TracebackType

    from mse_conformance.models.host import EventTarget, Unsubscribe


class EventWaiter:
    """
    One-shot waiter for the next matching event of a host object.

    The listener(s) are registered on construction, so the operation that
    triggers the event can be issued after creating the waiter without
    missing a synchronously fired event. Listeners are removed as soon as
    the first matching event fired, or when the waiter is closed.

    Example:
        with EventWaiter(buffer, ("updateend", "error")) as waiter:
            buffer.append_buffer(data)
            event = await waiter.wait()
    """

    def __init__(
        self,
        target: EventTarget,
        events: str | Iterable[str],
        predicate: Callable[[str], bool] | None = None,
    ) -> None:
        """Initialize the waiter and subscribe to the event(s)."""
        if isinstance(events, str):
            events = (events,)
        self.target = target
        self.predicate = predicate
        self._future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._unsubscribers: list[Unsubscribe] = [
            target.subscribe(self._on_event, event) for event in events
        ]

    def _on_event(self, event: str) -> None:
        if self._future.done():
            return
        if self.predicate is not None and not self.predicate(event):
            return
        self._future.set_result(event)
        self.close()

    @property
    def fired(self) -> bool:
        """Return whether a matching event already fired."""
        return self._future.done() and not self._future.cancelled()

    async def wait(self) -> str:
        """Wait for the event and return its name."""
        try:
            return await self._future
        finally:
            self.close()

    def close(self) -> None:
        """Remove the listener(s)."""
        while self._unsubscribers:
            self._unsubscribers.pop()()

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager."""
        self.close()
        if not self._future.done():
            self._future.cancel()


async def wait_for_event(
    target: EventTarget,
    events: str | Iterable[str],
    predicate: Callable[[str], bool] | None = None,
) -> str:
    """
    Wait until target fires one of events and return the name of the event.

    :param target: The host object to listen on.
    :param events: Event name(s) to wait for.
    :param predicate: Optional extra condition evaluated when an event fires.
    """
    with EventWaiter(target, events, predicate) as waiter:
        return await waiter.wait()
