"""Utilities for keeping per-run prompt, response and event logs."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from ..events import RunEvent
from .files import append_jsonl, ensure_dir, write_json, write_text


@dataclass(slots=True)
class StepLogPaths:
    """Convenience container with derived log file paths."""

    prompt_path: Path
    response_path: Path


class RunLogger:
    """Persists prompts, responses and run events under ``runs/<run_id>``.

    Steps that issue several calls (one per frame) pass a ``label`` so every
    call keeps its own prompt file, e.g. ``BisectFrames-frame04-prompt.txt``.
    """

    def __init__(self, base_dir: str | Path = "runs") -> None:
        self._base_dir = ensure_dir(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def run_dir(self, run_id: str) -> Path:
        return ensure_dir(self._base_dir / run_id)

    def step_paths(self, run_id: str, step_name: str, label: str | None = None) -> StepLogPaths:
        """Return the paths used for logging a specific step."""
        stem = f"{step_name}-{label}" if label else step_name
        run_root = self.run_dir(run_id)
        return StepLogPaths(
            prompt_path=run_root / f"{stem}-prompt.txt",
            response_path=run_root / f"{stem}-response.json",
        )

    def log_prompt(self, run_id: str, step_name: str, prompt: str, label: str | None = None) -> None:
        write_text(self.step_paths(run_id, step_name, label).prompt_path, prompt)

    def log_response(self, run_id: str, step_name: str, response: Any, label: str | None = None) -> None:
        write_json(self.step_paths(run_id, step_name, label).response_path, response)

    def log_event(self, event: RunEvent) -> None:
        """Append an event to ``events.jsonl``; usable directly as an EventBus listener."""
        record = asdict(event)
        record["kind"] = event.kind.value
        append_jsonl(self.run_dir(event.run_id) / "events.jsonl", record)
