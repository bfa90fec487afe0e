"""Configuration containers for the animation generator."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import ClassVar, Tuple

DEFAULT_TEXT_API_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


@dataclass(slots=True)
class GeneratorConfig:
    """Static configuration applied to every generation run."""

    env_prefix: ClassVar[str] = "ANIGEN_"

    runs_dir: str = "runs"
    output_dir: str = "outputs"
    enable_mock_generation: bool = True
    gemini_api_key: str | None = None
    text_api_url: str = DEFAULT_TEXT_API_URL
    text_model: str = "gemini-2.5-flash"
    image_model: str = "gemini-2.5-flash-image-preview"
    frame_count: int = 9
    max_dimension: int = 512
    use_pose_plan: bool = True
    preview_fps: int = 5
    interior_retries: int = 0
    export_formats: Tuple[str, ...] = ("zip",)
    request_timeout: int = 120

    def __post_init__(self) -> None:
        if self.frame_count < 2:
            raise ValueError(f"frame_count must be at least 2, got {self.frame_count}")
        if self.max_dimension <= 0:
            raise ValueError(f"max_dimension must be positive, got {self.max_dimension}")
        if self.interior_retries < 0:
            raise ValueError("interior_retries cannot be negative")
        self.preview_fps = min(20, max(1, self.preview_fps))
        unknown = set(self.export_formats) - {"zip", "gif"}
        if unknown:
            raise ValueError(f"Unsupported export formats: {sorted(unknown)}")

    @property
    def gif_delay_ms(self) -> int:
        """Per-frame display delay derived from the preview frame rate."""
        return round(1000 / self.preview_fps)

    @classmethod
    def from_env(cls) -> "GeneratorConfig":
        """Create a config object populated from environment variables."""
        prefix = cls.env_prefix
        formats = os.getenv(f"{prefix}EXPORT_FORMATS", "zip")
        return cls(
            runs_dir=os.getenv(f"{prefix}RUNS_DIR", "runs"),
            output_dir=os.getenv(f"{prefix}OUTPUT_DIR", "outputs"),
            enable_mock_generation=os.getenv(f"{prefix}ENABLE_MOCKS", "true").lower() == "true",
            gemini_api_key=os.getenv("GEMINI_API_KEY"),
            text_api_url=os.getenv(f"{prefix}TEXT_API_URL", DEFAULT_TEXT_API_URL),
            text_model=os.getenv(f"{prefix}TEXT_MODEL", "gemini-2.5-flash"),
            image_model=os.getenv(f"{prefix}IMAGE_MODEL", "gemini-2.5-flash-image-preview"),
            frame_count=int(os.getenv(f"{prefix}FRAME_COUNT", "9")),
            max_dimension=int(os.getenv(f"{prefix}MAX_DIMENSION", "512")),
            use_pose_plan=os.getenv(f"{prefix}USE_POSE_PLAN", "true").lower() == "true",
            preview_fps=int(os.getenv(f"{prefix}PREVIEW_FPS", "5")),
            interior_retries=int(os.getenv(f"{prefix}INTERIOR_RETRIES", "0")),
            export_formats=tuple(part.strip() for part in formats.split(",") if part.strip()),
            request_timeout=int(os.getenv(f"{prefix}REQUEST_TIMEOUT", "120")),
        )
