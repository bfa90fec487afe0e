"""
Animation assembly.

Turns the ordered, possibly sparse, frame slots of a run into something a
user can look at or download: a cyclic live preview, a zip archive with one
PNG per frame, or an animated GIF encoded with Pillow.
"""

from __future__ import annotations

import asyncio
import io
import zipfile
from typing import Awaitable, Callable, List, Optional, Sequence, Union

from PIL import Image

from .types import FramePayload
from .utils.files import slugify_prompt
from .utils.images import as_png, decode_frame

FrameSlots = Sequence[Optional[FramePayload]]
FrameCallback = Callable[[int, Optional[FramePayload]], Union[None, Awaitable[None]]]


def nearest_available_frame(frames: FrameSlots, index: int) -> Optional[FramePayload]:
    """Return the frame to show at playback position ``index``.

    Looks backwards from ``index`` for the most recent non-blank slot; if none
    precedes it, falls back to the first non-blank slot anywhere. Returns
    ``None`` only when every slot is blank.
    """
    if not frames:
        return None
    index = min(max(index, 0), len(frames) - 1)
    for position in range(index, -1, -1):
        if frames[position] is not None:
            return frames[position]
    for frame in frames:
        if frame is not None:
            return frame
    return None


class AnimationPlayer:
    """Cyclic preview over a live list of frame slots.

    The player keeps a reference to ``frames`` rather than a copy, so slots
    filled while a run is still going show up on the next tick.
    """

    def __init__(self, frames: FrameSlots, fps: int = 5) -> None:
        if fps <= 0:
            raise ValueError("fps must be positive")
        self._frames = frames
        self._fps = fps
        self._position = 0

    @property
    def position(self) -> int:
        return self._position

    @property
    def interval(self) -> float:
        """Seconds between two ticks."""
        return 1.0 / self._fps

    def set_fps(self, fps: int) -> None:
        if fps <= 0:
            raise ValueError("fps must be positive")
        self._fps = fps

    def frame_at(self, index: int) -> Optional[FramePayload]:
        return nearest_available_frame(self._frames, index)

    def current(self) -> Optional[FramePayload]:
        return self.frame_at(self._position)

    def tick(self) -> Optional[FramePayload]:
        """Advance one slot (wrapping around) and return the frame to display."""
        if self._frames:
            self._position = (self._position + 1) % len(self._frames)
        return self.current()

    async def play(self, on_frame: FrameCallback, ticks: Optional[int] = None) -> None:
        """Call ``on_frame(position, frame)`` every interval, forever or for ``ticks`` ticks."""
        shown = 0
        while ticks is None or shown < ticks:
            result = on_frame(self._position, self.current())
            if asyncio.iscoroutine(result):
                await result
            shown += 1
            await asyncio.sleep(self.interval)
            self.tick()


def frame_filename(index: int) -> str:
    return f"frame_{index:02d}.png"


def artifact_filename(prompt: str, extension: str) -> str:
    """Download name for an artifact, derived from the user's prompt."""
    return f"{slugify_prompt(prompt)}.{extension}"


def build_frame_archive(frames: FrameSlots) -> bytes:
    """Zip every non-blank slot as ``frame_NN.png``.

    Raises ``ValueError`` when there is nothing to package.
    """
    buffer = io.BytesIO()
    written = 0
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for index, frame in enumerate(frames):
            if frame is None:
                continue
            archive.writestr(frame_filename(index), as_png(frame))
            written += 1
    if written == 0:
        raise ValueError("No frames available to package.")
    return buffer.getvalue()


def build_gif(frames: FrameSlots, delay_ms: int = 200) -> bytes:
    """Encode the non-blank slots as an infinitely looping animated GIF.

    Every frame is decoded to RGBA and resized to the first frame's
    dimensions so the encoder receives uniform pixel buffers.
    """
    images: List[Image.Image] = [decode_frame(frame) for frame in frames if frame is not None]
    if not images:
        raise ValueError("No frames available to encode.")

    size = images[0].size
    uniform = [image if image.size == size else image.resize(size, Image.LANCZOS) for image in images]

    output = io.BytesIO()
    first, rest = uniform[0], uniform[1:]
    first.save(
        output,
        format="GIF",
        save_all=True,
        append_images=rest,
        duration=delay_ms,
        loop=0,
        disposal=2,
    )
    return output.getvalue()
