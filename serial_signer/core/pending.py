"""Single-slot mailboxes for requests awaiting a device response."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .errors import RequestInProgressError
from .models import PendingKind

_LOGGER = logging.getLogger(__name__)


class PendingRequests:
    """One future per request kind, matched to responses by command tag.

    The device answers in order and carries no request identifier, so at most
    one request of each kind may be outstanding. A request issuer claims the
    slot; claiming a slot that another issuer still waits on raises
    RequestInProgressError. Observers share the slot's future without claiming
    it, and an issuer adopts a slot created by an observer.
    """

    def __init__(self) -> None:
        self._futures: dict[PendingKind, asyncio.Future[Any]] = {}
        self._claimed: set[PendingKind] = set()

    def claim(self, kind: PendingKind) -> asyncio.Future[Any]:
        """Reserve the slot for a new request.

        Raises:
            RequestInProgressError: If an earlier request of this kind has not
                been answered yet.
        """
        future = self._futures.get(kind)
        if future is not None and not future.done():
            if kind in self._claimed:
                raise RequestInProgressError(kind.value)
        else:
            future = asyncio.get_running_loop().create_future()
            self._futures[kind] = future

        self._claimed.add(kind)
        return future

    def observe(self, kind: PendingKind) -> asyncio.Future[Any]:
        """Get the future resolved by the next response of this kind."""
        future = self._futures.get(kind)
        if future is None or future.done():
            future = asyncio.get_running_loop().create_future()
            self._futures[kind] = future
            self._claimed.discard(kind)
        return future

    def resolve(self, kind: PendingKind, value: Any) -> bool:
        """Resolve and clear the slot.

        Returns:
            True if a waiter was resolved, False if the slot was empty.
        """
        future = self._futures.pop(kind, None)
        self._claimed.discard(kind)
        if future is None or future.done():
            _LOGGER.debug("No pending %s request to resolve", kind.value)
            return False
        future.set_result(value)
        return True

    def cancel_all(self) -> None:
        """Release every waiter with CancelledError and clear all slots."""
        for kind, future in self._futures.items():
            if not future.done():
                _LOGGER.debug("Cancelling pending %s request", kind.value)
                future.cancel()
        self._futures.clear()
        self._claimed.clear()
