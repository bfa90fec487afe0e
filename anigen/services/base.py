"""Service protocols and the structured-output contract shared by text clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from ..errors import InvalidPlan
from ..types import FramePayload


@dataclass(slots=True)
class StructuredCompletion:
    """Parsed structured output plus the token usage reported for the call."""

    data: Any
    prompt_tokens: int = 0
    completion_tokens: int = 0
    raw_text: Optional[str] = field(default=None, repr=False)

    @property
    def usage(self) -> Tuple[int, int]:
        return self.prompt_tokens, self.completion_tokens


class StructuredTextModel(Protocol):
    """Text generation service returning JSON that follows a schema."""

    async def complete_structured(
        self,
        prompt: str,
        schema: dict,
        *,
        expected_count: int,
        required_fields: Sequence[str],
    ) -> StructuredCompletion:
        ...


class ImageEditModel(Protocol):
    """Image generation service conditioned on reference images."""

    async def edit_image(
        self,
        references: Sequence[FramePayload],
        instruction: str,
        *,
        frame_index: int,
    ) -> FramePayload:
        ...


def validate_records(
    data: Any,
    *,
    expected_count: int,
    required_fields: Sequence[str],
    usage: Optional[Tuple[int, int]] = None,
) -> List[dict]:
    """Check ``data`` is a list of exactly ``expected_count`` records with string fields.

    Raises ``InvalidPlan`` (carrying ``usage``) describing the first problem found.
    """
    if not isinstance(data, list):
        raise InvalidPlan(
            f"Expected a JSON array of {expected_count} frames, got {type(data).__name__}.",
            usage=usage,
        )
    if len(data) != expected_count:
        raise InvalidPlan(
            f"Expected exactly {expected_count} frames in the animation plan, got {len(data)}.",
            usage=usage,
        )
    for position, record in enumerate(data):
        if not isinstance(record, dict):
            raise InvalidPlan(f"Plan entry {position} is not an object.", usage=usage)
        missing = [name for name in required_fields if not isinstance(record.get(name), str)]
        if missing:
            raise InvalidPlan(
                f"Plan entry {position} is missing string fields: {', '.join(missing)}.",
                usage=usage,
            )
    return data
