"""Nodes exporting the finished frames and writing the run report."""

from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import Sequence

from ..assembly import artifact_filename, build_frame_archive, build_gif
from ..errors import InsufficientFrames
from ..types import Report, RunState, RunStatus
from ..utils.files import atomic_write, ensure_dir, write_json
from .base import BaseNode

MIN_FRAMES = 2


class AssembleAnimation(BaseNode):
    """Packages the resolved frames as a zip archive and/or an animated GIF."""

    def __init__(
        self,
        run_id: str,
        logger,
        events,
        output_dir: str | Path,
        export_formats: Sequence[str],
        gif_delay_ms: int,
    ) -> None:
        super().__init__(name="AssembleAnimation", run_id=run_id, logger=logger, events=events)
        self._output_dir = Path(output_dir)
        self._export_formats = tuple(export_formats)
        self._gif_delay_ms = gif_delay_ms

    async def run(self, state: RunState) -> RunState:
        self.enter(state, RunStatus.ASSEMBLING)
        resolved = sum(1 for _ in state.resolved_frames())
        if resolved < MIN_FRAMES:
            raise InsufficientFrames("Not enough frames were generated to create an animation.")

        self.log_prompt(f"Exporting {resolved}/{state.frame_count} frames as {', '.join(self._export_formats) or 'nothing'}.")
        run_dir = ensure_dir(self._output_dir / self.run_id)
        for fmt in self._export_formats:
            if fmt == "zip":
                payload = build_frame_archive(state.frames)
            elif fmt == "gif":
                payload = build_gif(state.frames, self._gif_delay_ms)
            else:
                raise ValueError(f"Unsupported export format: {fmt}")
            target = atomic_write(run_dir / artifact_filename(state.prompt, fmt), payload)
            state.artifacts[fmt] = str(target)

        self.log_response({"artifacts": state.artifacts, "missing": state.missing_indices()})
        return state


class ReportNode(BaseNode):
    """Aggregates and writes the final run report."""

    def __init__(self, run_id: str, logger, events, output_dir: str | Path) -> None:
        super().__init__(name="Report", run_id=run_id, logger=logger, events=events)
        self._output_dir = Path(output_dir)

    async def run(self, state: RunState) -> RunState:
        """Generate a summary of the run and store it next to the artifacts."""
        report = Report(
            run_id=self.run_id,
            frame_count=state.frame_count,
            frames_resolved=sum(1 for _ in state.resolved_frames()),
            missing_indices=state.missing_indices(),
            image_calls=state.image_calls,
            cost_estimate=round(state.tracker.cost, 6),
            progress=state.tracker.steps,
            total_steps=state.total_steps,
            artifacts=dict(state.artifacts),
            timings_ms=dict(state.timings_ms) or None,
            source_size=state.source_size,
        )
        state.report = report
        report_path = ensure_dir(self._output_dir / self.run_id) / "report.json"
        write_json(report_path, asdict(report))

        self.log_prompt("Generating final report.")
        self.log_response({"report_path": str(report_path)})
        return state
