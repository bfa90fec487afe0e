"""Gemini image model client used to redraw and interpolate animation frames."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Sequence

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from PIL import Image

from ..errors import GenerationServiceError, NoImageReturned
from ..types import FramePayload
from ..utils.files import sha256_hex
from ..utils.images import decode_frame, encode_png

logger = logging.getLogger(__name__)

MAX_REFERENCES = 3


class GeminiImageClient:
    """Sends reference images plus an instruction and returns the generated frame.

    When ``use_mock`` is True the first reference image is tinted with a colour
    derived from the instruction, so runs stay deterministic and offline.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gemini-2.5-flash-image-preview",
        use_mock: bool = True,
        timeout: int = 120,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._use_mock = use_mock
        self._timeout = timeout
        self._client: genai.Client | None = None

    async def edit_image(
        self,
        references: Sequence[FramePayload],
        instruction: str,
        *,
        frame_index: int,
    ) -> FramePayload:
        """Generate one frame conditioned on ``references``."""
        if not references or len(references) > MAX_REFERENCES:
            raise ValueError(f"Expected 1-{MAX_REFERENCES} reference images, got {len(references)}")
        if self._use_mock:
            return await self._mock_frame(references, instruction, frame_index)
        if not self._api_key:
            raise GenerationServiceError("Gemini API key is missing; cannot call the image model.")

        contents: list[Any] = [
            types.Part.from_bytes(data=reference.data, mime_type=reference.mime_type) for reference in references
        ]
        contents.append(instruction)

        client = self._resolve_client()
        try:
            response = await client.aio.models.generate_content(
                model=self._model,
                contents=contents,
                config=types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"]),
            )
        except (genai_errors.APIError, httpx.TimeoutException, httpx.TransportError, OSError) as err:
            # The SDK re-raises httpx transport errors unwrapped once its retries are exhausted.
            raise GenerationServiceError(f"Image model call for frame {frame_index} failed: {err}") from err

        frame = self._extract_image(response)
        if frame is None:
            logger.debug("frame %s response without image: %s", frame_index, self._extract_text(response))
            raise NoImageReturned(f"The image model did not return an image for frame {frame_index}.")
        return frame

    def _resolve_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(
                api_key=self._api_key,
                http_options=types.HttpOptions(timeout=self._timeout * 1000),
            )
        return self._client

    async def _mock_frame(
        self, references: Sequence[FramePayload], instruction: str, frame_index: int
    ) -> FramePayload:
        await asyncio.sleep(0)
        digest = bytes.fromhex(sha256_hex(f"{frame_index}:{instruction}".encode("utf-8")))
        base = decode_frame(references[0])
        tint = Image.new("RGBA", base.size, (digest[0], digest[1], digest[2], 255))
        blended = Image.blend(base, tint, 0.25)
        blended.putalpha(base.getchannel("A"))
        return FramePayload(data=encode_png(blended), mime_type="image/png")

    @staticmethod
    def _extract_image(response: Any) -> FramePayload | None:
        """Return the first inline image part of the first candidate."""
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return None
        content = getattr(candidates[0], "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data:
                data = inline.data
                if isinstance(data, str):
                    return FramePayload.from_data_url(f"data:{inline.mime_type or 'image/png'};base64,{data}")
                return FramePayload(data=bytes(data), mime_type=inline.mime_type or "image/png")
        return None

    @staticmethod
    def _extract_text(response: Any) -> str:
        texts = []
        for candidate in getattr(response, "candidates", None) or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                if getattr(part, "text", None):
                    texts.append(part.text)
        return " ".join(texts)
