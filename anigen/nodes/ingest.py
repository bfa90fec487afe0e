"""Node normalising the uploaded character image."""

from __future__ import annotations

import json

from ..types import RunState
from ..utils.files import sha256_hex
from ..utils.images import preprocess_image
from .base import BaseNode


class IngestCharacter(BaseNode):
    """Downscales the upload, re-encodes it as PNG and detects a transparent background."""

    def __init__(
        self,
        run_id: str,
        logger,
        events,
        image_bytes: bytes,
        prompt: str,
        max_dimension: int,
    ) -> None:
        super().__init__(name="IngestCharacter", run_id=run_id, logger=logger, events=events)
        self._image_bytes = image_bytes
        self._prompt = prompt
        self._max_dimension = max_dimension

    async def run(self, state: RunState) -> RunState:
        """Populate ``state.source`` with the normalised upload."""
        self.log_prompt(
            json.dumps(
                {
                    "prompt": self._prompt,
                    "cyclic": state.cyclic,
                    "frame_count": state.frame_count,
                    "upload_bytes": len(self._image_bytes),
                    "max_dimension": self._max_dimension,
                },
                ensure_ascii=False,
                indent=2,
            )
        )

        prepared = preprocess_image(self._image_bytes, self._max_dimension)
        state.prompt = self._prompt
        state.source = prepared.payload
        state.source_size = (prepared.width, prepared.height)
        state.has_transparency = prepared.has_transparency

        self.log_response(
            {
                "sha256": sha256_hex(prepared.payload.data),
                "width": prepared.width,
                "height": prepared.height,
                "has_transparency": prepared.has_transparency,
            }
        )
        return state
