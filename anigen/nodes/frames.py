"""Nodes that schedule the image calls filling every frame slot.

Slot 0 and slot N-1 are resolved first. The interior is then filled by
binary subdivision: each level asks for the midpoint of every open range,
conditioned on the two range endpoints, and waits for the whole level before
splitting the ranges for the next one. A frame is therefore only ever
generated from its two nearest resolved neighbours.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

from ..errors import AnimationError
from ..events import EventKind
from ..services.base import ImageEditModel
from ..types import FramePayload, FrameRange, FrameResult, RunState, RunStatus
from ..utils.poses import describe_delta
from ..utils.prompts import load_prompt, pose_json
from .base import BaseNode

logger = logging.getLogger(__name__)

TRANSPARENT_BACKGROUND = "The background MUST be perfectly transparent."
MATCHING_BACKGROUND = (
    "The background of the generated image MUST perfectly match the background of the provided keyframes. "
    "Do not alter the background."
)


def background_instruction(state: RunState) -> str:
    return TRANSPARENT_BACKGROUND if state.has_transparency else MATCHING_BACKGROUND


class ResolveEndpoints(BaseNode):
    """Generates slot 0 from the upload and slot N-1 from slot 0 (or copies it for loops).

    Either endpoint failing is fatal for the run.
    """

    def __init__(self, run_id: str, logger, events, image_model: ImageEditModel) -> None:
        super().__init__(name="ResolveEndpoints", run_id=run_id, logger=logger, events=events)
        self._image_model = image_model

    async def run(self, state: RunState) -> RunState:
        if state.source is None:
            raise ValueError("ResolveEndpoints requires a preprocessed source image.")

        self.enter(state, RunStatus.RESOLVING_ENDPOINTS, "Generating frames...")
        last_index = state.frame_count - 1
        background = background_instruction(state)

        first_prompt = self._first_frame_prompt(state, background)
        self.log_prompt(first_prompt, label="frame00")
        state.image_calls += 1
        first = await self._image_model.edit_image([state.source], first_prompt, frame_index=0)
        state.frames[0] = first
        state.tracker.add_image_calls(1)
        self.frame_resolved(state, 0)

        if state.cyclic:
            state.frames[last_index] = first
            self.log_response({"first": 0, "last": last_index, "last_copied_from_first": True})
            self.frame_resolved(state, last_index)
            return state

        last_prompt = self._last_frame_prompt(state, background)
        self.log_prompt(last_prompt, label=f"frame{last_index:02d}")
        state.image_calls += 1
        last = await self._image_model.edit_image([first, state.source], last_prompt, frame_index=last_index)
        state.frames[last_index] = last
        state.tracker.add_image_calls(1)
        self.frame_resolved(state, last_index)

        self.log_response({"first": 0, "last": last_index, "last_copied_from_first": False})
        return state

    @staticmethod
    def _first_frame_prompt(state: RunState, background: str) -> str:
        if state.has_plan:
            return load_prompt(
                "first_frame_pose",
                {"pose": pose_json(state.poses[0]), "background_instruction": background},
            )
        return load_prompt(
            "first_frame_generic",
            {"prompt": state.prompt, "background_instruction": background},
        )

    @staticmethod
    def _last_frame_prompt(state: RunState, background: str) -> str:
        if state.has_plan:
            return load_prompt(
                "last_frame_pose",
                {"pose": pose_json(state.poses[-1]), "background_instruction": background},
            )
        return load_prompt(
            "last_frame_generic",
            {"prompt": state.prompt, "background_instruction": background},
        )


class BisectFrames(BaseNode):
    """Fills the interior slots level by level.

    Interior failures are not fatal: the slot stays blank and any later range
    that needs it as an endpoint is skipped. ``retries`` extra attempts are
    made for a failed midpoint inside the same level.
    """

    def __init__(self, run_id: str, logger, events, image_model: ImageEditModel, retries: int = 0) -> None:
        super().__init__(name="BisectFrames", run_id=run_id, logger=logger, events=events)
        self._image_model = image_model
        self._retries = retries

    async def run(self, state: RunState) -> RunState:
        self.enter(state, RunStatus.BISECTING)
        worklist: List[FrameRange] = [FrameRange(0, state.frame_count - 1)]
        levels: List[dict] = []

        while any(not span.is_terminal for span in worklist):
            state.level += 1
            active = [span for span in worklist if not span.is_terminal]
            resolvable = [span for span in active if self._has_endpoints(state, span)]
            skipped = [span for span in active if not self._has_endpoints(state, span)]

            for span in skipped:
                logger.warning(
                    "run %s: skipping frame %s, boundary frame %s or %s is missing",
                    state.run_id,
                    span.midpoint,
                    span.start,
                    span.end,
                )
                self.emit(state, EventKind.FRAME_FAILED, frame_index=span.midpoint, message="missing boundary frame")

            logger.info(
                "run %s: level %s generating frames %s",
                state.run_id,
                state.level,
                [span.midpoint for span in resolvable],
            )
            results = await asyncio.gather(*(self._generate(state, span) for span in resolvable))

            resolved = [result for result in results if result is not None]
            for result in resolved:
                state.frames[result.index] = result.frame
            if resolved:
                state.tracker.add_image_calls(len(resolved))
            for result in resolved:
                self.frame_resolved(state, result.index)

            levels.append(
                {
                    "level": state.level,
                    "requested": [span.midpoint for span in resolvable],
                    "resolved": [result.index for result in resolved],
                    "skipped": [span.midpoint for span in skipped],
                }
            )
            worklist = [child for span in active for child in span.split()]

        self.log_response({"levels": levels, "missing": state.missing_indices()})
        return state

    @staticmethod
    def _has_endpoints(state: RunState, span: FrameRange) -> bool:
        if state.frames[span.start] is None or state.frames[span.end] is None:
            return False
        if state.has_plan:
            return span.start < len(state.poses) and span.midpoint < len(state.poses)
        return True

    async def _generate(self, state: RunState, span: FrameRange) -> Optional[FrameResult]:
        """Request the midpoint of ``span``; ``None`` when every attempt failed."""
        mid = span.midpoint
        prompt = self._mid_frame_prompt(state, span)
        references = self._references(state, span)
        self.log_prompt(prompt, label=f"frame{mid:02d}")

        for attempt in range(1 + self._retries):
            state.image_calls += 1
            try:
                frame = await self._image_model.edit_image(references, prompt, frame_index=mid)
            except AnimationError as exc:
                logger.warning(
                    "run %s: failed to generate frame %s (attempt %s/%s): %s",
                    state.run_id,
                    mid,
                    attempt + 1,
                    1 + self._retries,
                    exc,
                )
                continue
            return FrameResult(index=mid, frame=frame)

        self.emit(state, EventKind.FRAME_FAILED, frame_index=mid, message="image generation failed")
        return None

    @staticmethod
    def _references(state: RunState, span: FrameRange) -> Sequence[FramePayload]:
        start, end = state.frames[span.start], state.frames[span.end]
        assert start is not None and end is not None
        if state.has_plan and state.source is not None:
            return [start, end, state.source]
        return [start, end]

    @staticmethod
    def _mid_frame_prompt(state: RunState, span: FrameRange) -> str:
        background = background_instruction(state)
        if not state.has_plan:
            return load_prompt("mid_frame_generic", {"prompt": state.prompt, "background_instruction": background})
        changed, unchanged = describe_delta(state.poses[span.start], state.poses[span.midpoint])
        return load_prompt(
            "mid_frame_delta",
            {
                "changed_parts": changed,
                "unchanged_parts": unchanged,
                "background_instruction": background,
            },
        )
