"""Notification channel from a running generation to its observers."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    STATUS = "status"
    FRAME = "frame"
    FRAME_FAILED = "frame_failed"
    PROGRESS = "progress"


@dataclass(slots=True, frozen=True)
class RunEvent:
    """Snapshot emitted whenever something observable changes in a run."""

    kind: EventKind
    run_id: str
    status: str
    progress: int
    total_steps: int
    cost: float
    frame_index: Optional[int] = None
    level: Optional[int] = None
    message: Optional[str] = None


Listener = Callable[[RunEvent], None]


class EventBus:
    """Fan out run events to subscribed listeners in subscription order."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it again."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: RunEvent) -> None:
        logger.debug("event %s: %s", event.kind.value, event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("event listener %r failed on %s event", listener, event.kind.value)
