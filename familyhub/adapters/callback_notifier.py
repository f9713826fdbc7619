"""Callback notification adapter — implements ChangeNotifier.

Views subscribe a callback (plain function or coroutine function) and get
every SeriesChange so they can refresh their instance windows.
"""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Union

from familyhub.ports.notification_port import SeriesChange

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[SeriesChange], Union[None, Awaitable[None]]]


class CallbackNotifier:
    """Fans series changes out to subscribed callbacks, in subscription order.

    A failing callback is logged and the remaining ones still run.
    """

    def __init__(self) -> None:
        self._callbacks: list[ChangeCallback] = []

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register a callback. Returns a function that unsubscribes it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def series_changed(self, change: SeriesChange) -> None:
        logger.info(
            "Series change: %s %s %s", change.action, change.series_type.value, change.series_id,
        )
        for callback in list(self._callbacks):
            try:
                result = callback(change)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error(
                    "Change callback %r failed for series %s: %s",
                    callback, change.series_id, exc,
                )
