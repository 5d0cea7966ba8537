"""Deferred callbacks addressed by small integer handles."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

LOGGER = logging.getLogger(__name__)


class CallbackScheduler:
    """Wraps ``loop.call_later`` and hands out increasing handle ids starting at 1.

    Integer handles let a caller cancel a whole range of pending callbacks
    without holding the handles themselves.
    """

    def __init__(self) -> None:
        self._next_id = 1
        self._handles: dict[int, asyncio.TimerHandle] = {}

    @property
    def pending(self) -> tuple[int, ...]:
        return tuple(sorted(self._handles))

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> int:
        loop = asyncio.get_running_loop()
        handle_id = self._next_id
        self._next_id += 1

        def _fire() -> None:
            self._handles.pop(handle_id, None)
            callback(*args)

        self._handles[handle_id] = loop.call_later(delay, _fire)
        return handle_id

    def cancel(self, handle_id: int) -> bool:
        handle = self._handles.pop(handle_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def clear_range(self, start: int, stop: int) -> int:
        cleared = 0
        for handle_id in [h for h in self._handles if start <= h < stop]:
            if self.cancel(handle_id):
                cleared += 1
        if cleared:
            LOGGER.debug("Cancelled %d pending callback(s) in [%d, %d)", cleared, start, stop)
        return cleared
