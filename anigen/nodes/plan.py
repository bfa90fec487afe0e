"""Node asking the text model for a per-frame pose plan."""

from __future__ import annotations

import logging

from ..errors import InvalidPlan
from ..events import EventKind
from ..services.base import StructuredTextModel, validate_records
from ..types import POSE_FIELDS, PoseDescriptor, RunState, RunStatus
from ..utils.prompts import load_prompt
from .base import BaseNode

logger = logging.getLogger(__name__)

_FIELD_DESCRIPTIONS = {
    "notes": "A brief summary of the action in this frame.",
    "head": "Position and orientation of the head.",
    "torso": "Position and orientation of the torso.",
    "left_arm": "Position, rotation, and gesture of the left arm and hand.",
    "right_arm": "Position, rotation, and gesture of the right arm and hand.",
    "left_leg": "Position and orientation of the left leg and foot.",
    "right_leg": "Position and orientation of the right leg and foot.",
    "facial_expression": "The character's facial expression, including eyes and mouth.",
}


def pose_plan_schema(frame_count: int) -> dict:
    """JSON schema for an array of exactly ``frame_count`` pose records."""
    return {
        "type": "array",
        "minItems": frame_count,
        "maxItems": frame_count,
        "items": {
            "type": "object",
            "properties": {
                name: {"type": "string", "description": _FIELD_DESCRIPTIONS[name]} for name in POSE_FIELDS
            },
            "required": list(POSE_FIELDS),
        },
    }


class PlanAnimation(BaseNode):
    """Turns the motion description into one pose descriptor per frame."""

    def __init__(self, run_id: str, logger, events, text_model: StructuredTextModel) -> None:
        super().__init__(name="PlanAnimation", run_id=run_id, logger=logger, events=events)
        self._text_model = text_model

    async def run(self, state: RunState) -> RunState:
        if not state.use_pose_plan:
            logger.info("run %s: pose planning disabled, using generic frame prompts", state.run_id)
            return state

        self.enter(state, RunStatus.PLANNING_POSE, "Generating animation plan...")
        prompt = self._build_prompt(state)
        self.log_prompt(prompt)

        try:
            completion = await self._text_model.complete_structured(
                prompt,
                pose_plan_schema(state.frame_count),
                expected_count=state.frame_count,
                required_fields=POSE_FIELDS,
            )
        except InvalidPlan as exc:
            # The call itself was billed even though its output is unusable.
            if exc.usage:
                state.tracker.add_token_usage(*exc.usage)
            self.log_response({"status": "invalid", "error": str(exc)})
            raise

        state.tracker.add_token_usage(*completion.usage)
        records = validate_records(
            completion.data,
            expected_count=state.frame_count,
            required_fields=POSE_FIELDS,
        )
        state.poses = [PoseDescriptor.from_mapping(record) for record in records]

        state.tracker.advance()
        self.emit(state, EventKind.PROGRESS, message="Animation plan ready.")
        self.log_response(
            {
                "status": "ok",
                "prompt_tokens": completion.prompt_tokens,
                "completion_tokens": completion.completion_tokens,
                "poses": [pose.as_dict() for pose in state.poses],
            }
        )
        return state

    @staticmethod
    def _build_prompt(state: RunState) -> str:
        if state.cyclic:
            cycle_instruction = (
                "The animation should loop seamlessly, so the last frame should lead smoothly back into the first."
            )
        else:
            cycle_instruction = "The animation has a distinct start and end."
        return load_prompt(
            "plan_animation",
            {
                "frame_count": state.frame_count,
                "prompt": state.prompt,
                "cycle_instruction": cycle_instruction,
                "field_list": ", ".join(f'"{name}"' for name in POSE_FIELDS),
            },
        )
