"""Fire-and-forget listener notification and the generation progress channel."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Iterable
from typing import Any

from game_forge.models import ProgressEvent

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Any]

# Keeps scheduled listener tasks alive until they finish.
_pending: set[asyncio.Task] = set()


def _log_task_failure(task: asyncio.Task) -> None:
    _pending.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error("listener task failed", exc_info=task.exception())


def notify(listeners: Iterable[Listener], event: Any) -> None:
    """Deliver event to every listener without waiting on any of them.

    Coroutine listeners are scheduled as tasks; failures are logged and never
    reach the emitter.
    """
    for listener in list(listeners):
        try:
            result = listener(event)
        except Exception:
            logger.exception("listener %r failed", listener)
            continue
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            _pending.add(task)
            task.add_done_callback(_log_task_failure)


class ProgressChannel:
    """Progress events for one run; percentages never go backwards."""

    def __init__(self, session_id: str, run_id: str, listeners: Iterable[Listener] = ()) -> None:
        self.session_id = session_id
        self.run_id = run_id
        self._listeners = list(listeners)
        self._percentage = 0
        self.last: ProgressEvent | None = None

    @property
    def percentage(self) -> int:
        return self._percentage

    def emit(self, step_index: int, percentage: int, message: str) -> ProgressEvent:
        self._percentage = max(self._percentage, min(100, int(percentage)))
        event = ProgressEvent(
            session_id=self.session_id,
            run_id=self.run_id,
            step_index=step_index,
            percentage=self._percentage,
            message=message,
        )
        self.last = event
        logger.debug("progress %s step=%d %d%% %s", self.run_id, step_index, self._percentage, message)
        notify(self._listeners, event)
        return event
