"""Node abstractions shared by concrete pipeline steps."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from ..events import EventBus, EventKind, RunEvent
from ..types import RunState, RunStatus
from ..utils.run_logger import RunLogger


class Node(Protocol):
    """A unit of work that mutates the shared run state."""

    name: str

    async def run(self, state: RunState) -> RunState:
        ...


@dataclass(slots=True)
class BaseNode:
    """Convenience base for nodes needing logging and event support."""

    name: str
    run_id: str
    logger: RunLogger
    events: EventBus

    def log_prompt(self, prompt: str, label: Optional[str] = None) -> None:
        """Persist the prompt."""
        self.logger.log_prompt(self.run_id, self.name, prompt, label)

    def log_response(self, response: object, label: Optional[str] = None) -> None:
        """Persist the response."""
        self.logger.log_response(self.run_id, self.name, response, label)

    def emit(
        self,
        state: RunState,
        kind: EventKind,
        *,
        frame_index: Optional[int] = None,
        message: Optional[str] = None,
    ) -> None:
        self.events.emit(
            RunEvent(
                kind=kind,
                run_id=state.run_id,
                status=state.status.value,
                progress=state.tracker.steps,
                total_steps=state.total_steps,
                cost=state.tracker.cost,
                frame_index=frame_index,
                level=state.level or None,
                message=message,
            )
        )

    def enter(self, state: RunState, status: RunStatus, message: Optional[str] = None) -> None:
        """Move the run into ``status`` and notify observers."""
        state.status = status
        self.emit(state, EventKind.STATUS, message=message)

    def frame_resolved(self, state: RunState, index: int) -> None:
        """Count a resolved slot towards progress and notify observers."""
        state.tracker.advance()
        self.emit(state, EventKind.FRAME, frame_index=index)
