"""Core data models used across the animation generator."""

from __future__ import annotations

import base64
import enum
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from .tracker import CostTracker

BODY_PARTS: Tuple[str, ...] = (
    "head",
    "torso",
    "left_arm",
    "right_arm",
    "left_leg",
    "right_leg",
    "facial_expression",
)
POSE_FIELDS: Tuple[str, ...] = ("notes",) + BODY_PARTS

_DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[^;,]+)?(?:;[^,]*)?,(?P<data>.*)$", re.DOTALL)


@dataclass(slots=True, frozen=True)
class FramePayload:
    """Binary image data plus its declared MIME type."""

    data: bytes
    mime_type: str = "image/png"

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("utf-8")
        return f"data:{self.mime_type};base64,{encoded}"

    @classmethod
    def from_data_url(cls, data_url: str) -> "FramePayload":
        """Parse a ``data:<mime>;base64,<payload>`` URL."""
        match = _DATA_URL_PATTERN.match(data_url)
        if match is None:
            raise ValueError("Not a data URL")
        mime = match.group("mime") or "image/png"
        return cls(data=base64.b64decode(match.group("data")), mime_type=mime)


@dataclass(slots=True, frozen=True)
class PoseDescriptor:
    """Target description of every body part for one frame."""

    notes: str
    head: str
    torso: str
    left_arm: str
    right_arm: str
    left_leg: str
    right_leg: str
    facial_expression: str

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object]) -> "PoseDescriptor":
        return cls(**{name: str(raw[name]) for name in POSE_FIELDS})

    def as_dict(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in POSE_FIELDS}

    def part(self, name: str) -> str:
        if name not in BODY_PARTS:
            raise KeyError(name)
        return getattr(self, name)


@dataclass(slots=True, frozen=True)
class FrameRange:
    """Half-open gap ``(start, end)`` still waiting for its midpoint."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError(f"Range end must exceed start: ({self.start}, {self.end})")

    @property
    def width(self) -> int:
        return self.end - self.start

    @property
    def is_terminal(self) -> bool:
        return self.width <= 1

    @property
    def midpoint(self) -> int:
        return (self.start + self.end) // 2

    def split(self) -> Tuple["FrameRange", "FrameRange"]:
        mid = self.midpoint
        return FrameRange(self.start, mid), FrameRange(mid, self.end)


@dataclass(slots=True, frozen=True)
class FrameResult:
    """Successful generation of one frame slot."""

    index: int
    frame: FramePayload


class RunStatus(str, enum.Enum):
    """Lifecycle stages of a single generation run."""

    IDLE = "idle"
    PLANNING_POSE = "planning_pose"
    RESOLVING_ENDPOINTS = "resolving_endpoints"
    BISECTING = "bisecting"
    ASSEMBLING = "assembling"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(slots=True)
class Report:
    """Aggregated run metadata surfaced at the end of the pipeline."""

    run_id: str
    frame_count: int
    frames_resolved: int
    missing_indices: List[int]
    image_calls: int
    cost_estimate: float
    progress: int
    total_steps: int
    artifacts: Dict[str, str] = field(default_factory=dict)
    timings_ms: Optional[Dict[str, int]] = None
    source_size: Optional[Tuple[int, int]] = None


@dataclass(slots=True)
class RunState:
    """Mutable state owned by one generation run and passed between nodes."""

    run_id: str = ""
    prompt: str = ""
    cyclic: bool = False
    frame_count: int = 9
    use_pose_plan: bool = True
    source: Optional[FramePayload] = None
    source_size: Optional[Tuple[int, int]] = None
    has_transparency: bool = False
    poses: List[PoseDescriptor] = field(default_factory=list)
    frames: List[Optional[FramePayload]] = field(default_factory=list)
    tracker: CostTracker = field(default_factory=CostTracker)
    status: RunStatus = RunStatus.IDLE
    level: int = 0
    image_calls: int = 0
    error: Optional[str] = None
    failure: Optional[Exception] = None
    artifacts: Dict[str, str] = field(default_factory=dict)
    timings_ms: Dict[str, int] = field(default_factory=dict)
    report: Optional[Report] = None

    def __post_init__(self) -> None:
        if not self.frames:
            self.frames = [None] * self.frame_count

    @property
    def total_steps(self) -> int:
        """Progress denominator: one step per frame plus one for planning."""
        return self.frame_count + (1 if self.use_pose_plan else 0)

    @property
    def has_plan(self) -> bool:
        return len(self.poses) == self.frame_count

    def resolved_frames(self) -> Iterator[Tuple[int, FramePayload]]:
        for index, frame in enumerate(self.frames):
            if frame is not None:
                yield index, frame

    def missing_indices(self) -> List[int]:
        return [index for index, frame in enumerate(self.frames) if frame is None]

    @property
    def is_loading(self) -> bool:
        return self.status not in {RunStatus.IDLE, RunStatus.COMPLETE, RunStatus.FAILED}
