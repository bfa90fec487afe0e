"""Pipeline orchestration for the animation generator."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Sequence

from langchain_core.runnables import Runnable, RunnableLambda

from .assembly import AnimationPlayer, artifact_filename, build_frame_archive, build_gif
from .config import GeneratorConfig
from .errors import AnimationError, RunInProgressError
from .events import EventBus, EventKind, Listener, RunEvent
from .nodes.assemble import AssembleAnimation, ReportNode
from .nodes.base import Node
from .nodes.frames import BisectFrames, ResolveEndpoints
from .nodes.ingest import IngestCharacter
from .nodes.plan import PlanAnimation
from .services.base import ImageEditModel, StructuredTextModel
from .services.gemini_image import GeminiImageClient
from .services.gemini_text import GeminiTextClient
from .types import RunState, RunStatus
from .utils.files import read_binary
from .utils.run_logger import RunLogger

logger = logging.getLogger(__name__)


class AnimationGenerator:
    """High-level facade exposing the end-to-end generation flow.

    Only one run may be active per generator; a second concurrent ``run``
    raises ``RunInProgressError``. The most recent state stays available as
    ``last_state`` for previews and downloads.
    """

    def __init__(
        self,
        config: GeneratorConfig | None = None,
        *,
        text_model: StructuredTextModel | None = None,
        image_model: ImageEditModel | None = None,
    ) -> None:
        self.config = config or GeneratorConfig.from_env()
        self.logger = RunLogger(base_dir=self.config.runs_dir)
        self.events = EventBus()
        self.events.subscribe(self.logger.log_event)
        self.last_state: RunState | None = None
        self._run_lock = threading.Lock()

        # Service clients are created once and reused for every run.
        self.text_model = text_model or GeminiTextClient(
            api_key=self.config.gemini_api_key,
            api_url=self.config.text_api_url,
            model=self.config.text_model,
            use_mock=self.config.enable_mock_generation,
            timeout=self.config.request_timeout,
        )
        self.image_model = image_model or GeminiImageClient(
            api_key=self.config.gemini_api_key,
            model=self.config.image_model,
            use_mock=self.config.enable_mock_generation,
            timeout=self.config.request_timeout,
        )

    def subscribe(self, listener: Listener):
        """Register an observer for run events; returns an unsubscribe callable."""
        return self.events.subscribe(listener)

    def run(
        self,
        *,
        prompt: str,
        image_bytes: bytes | None = None,
        image_path: str | Path | None = None,
        cyclic: bool = False,
    ) -> RunState:
        """Execute a full run synchronously and return the resulting state."""
        return asyncio.run(self.arun(prompt=prompt, image_bytes=image_bytes, image_path=image_path, cyclic=cyclic))

    async def arun(
        self,
        *,
        prompt: str,
        image_bytes: bytes | None = None,
        image_path: str | Path | None = None,
        cyclic: bool = False,
    ) -> RunState:
        """Execute a full run and return the resulting state.

        Fatal ``AnimationError``s do not propagate: the returned state has
        status ``FAILED`` and a human-readable ``error``.
        """
        if image_bytes is None and image_path is not None:
            image_bytes = read_binary(image_path)
        if not prompt or not prompt.strip() or not image_bytes:
            raise ValueError("Please provide both an image and a prompt.")

        if not self._run_lock.acquire(blocking=False):
            raise RunInProgressError("A generation run is already in progress.")
        try:
            return await self._execute(prompt=prompt.strip(), image_bytes=image_bytes, cyclic=cyclic)
        finally:
            self._run_lock.release()

    async def _execute(self, *, prompt: str, image_bytes: bytes, cyclic: bool) -> RunState:
        run_id = self._new_run_id()
        state = RunState(
            run_id=run_id,
            prompt=prompt,
            cyclic=cyclic,
            frame_count=self.config.frame_count,
            use_pose_plan=self.config.use_pose_plan,
        )
        state.tracker.reset()
        self.last_state = state

        nodes = self._build_nodes(run_id=run_id, image_bytes=image_bytes, prompt=prompt)
        chain = self._build_chain(nodes)

        try:
            state = await chain.ainvoke(state)
        except AnimationError as exc:
            logger.error("run %s failed: %s", run_id, exc)
            state.failure = exc
            state.error = f"Failed to generate animation. {exc}"
            self._finish(state, RunStatus.FAILED, state.error)
            return state
        except Exception as exc:
            logger.exception("run %s aborted by an unexpected error", run_id)
            state.failure = exc
            state.error = f"Failed to generate animation. {exc}"
            self._finish(state, RunStatus.FAILED, state.error)
            raise

        self._finish(state, RunStatus.COMPLETE, "Animation complete.")
        return state

    def _finish(self, state: RunState, status: RunStatus, message: str) -> None:
        state.status = status
        state.tracker.freeze()
        self.events.emit(
            RunEvent(
                kind=EventKind.STATUS,
                run_id=state.run_id,
                status=status.value,
                progress=state.tracker.steps,
                total_steps=state.total_steps,
                cost=state.tracker.cost,
                message=message,
            )
        )

    def _build_chain(self, nodes: Sequence[Node]) -> Runnable:
        """Wire the nodes into one runnable sequence."""
        if not nodes:
            raise RuntimeError("Pipeline has no nodes configured.")

        steps: List[Runnable] = []
        for node in nodes:

            async def _step(state: RunState, _node: Node = node) -> RunState:
                return await self._invoke_node(_node, state)

            steps.append(RunnableLambda(_step, name=node.name))

        chain = steps[0]
        for step in steps[1:]:
            chain = chain | step
        return chain

    def _build_nodes(self, *, run_id: str, image_bytes: bytes, prompt: str) -> Sequence[Node]:
        """Construct node instances wired with the current services."""
        common = {"run_id": run_id, "logger": self.logger, "events": self.events}
        return [
            IngestCharacter(
                **common,
                image_bytes=image_bytes,
                prompt=prompt,
                max_dimension=self.config.max_dimension,
            ),
            PlanAnimation(**common, text_model=self.text_model),
            ResolveEndpoints(**common, image_model=self.image_model),
            BisectFrames(**common, image_model=self.image_model, retries=self.config.interior_retries),
            AssembleAnimation(
                **common,
                output_dir=self.config.output_dir,
                export_formats=self.config.export_formats,
                gif_delay_ms=self.config.gif_delay_ms,
            ),
            ReportNode(**common, output_dir=self.config.output_dir),
        ]

    async def _invoke_node(self, node: Node, state: RunState) -> RunState:
        """Execute a node while emitting structured state traces."""
        self._log_step_io(node.name, "input", state)

        started = time.perf_counter()
        updated_state = await node.run(state)
        elapsed = time.perf_counter() - started
        updated_state.timings_ms[node.name] = int(elapsed * 1000)

        self._log_step_io(node.name, "output", updated_state, elapsed)
        return updated_state

    def player(self, state: RunState | None = None, fps: int | None = None) -> AnimationPlayer:
        """Live preview over the frames of ``state`` (defaults to the latest run)."""
        target = self._require_state(state)
        return AnimationPlayer(target.frames, fps or self.config.preview_fps)

    def export_archive(self, state: RunState | None = None, output_dir: str | Path | None = None) -> Path:
        """Write ``<slug>.zip`` with one PNG per resolved frame and return its path."""
        target = self._require_state(state)
        path = Path(output_dir or self.config.output_dir) / artifact_filename(target.prompt, "zip")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(build_frame_archive(target.frames))
        return path

    def export_gif(self, state: RunState | None = None, output_dir: str | Path | None = None) -> Path:
        """Write ``<slug>.gif`` from the resolved frames and return its path."""
        target = self._require_state(state)
        path = Path(output_dir or self.config.output_dir) / artifact_filename(target.prompt, "gif")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(build_gif(target.frames, self.config.gif_delay_ms))
        return path

    def _require_state(self, state: RunState | None) -> RunState:
        target = state or self.last_state
        if target is None:
            raise RuntimeError("No generation run is available yet.")
        return target

    def _log_step_io(self, step: str, direction: str, state: RunState, elapsed: float | None = None) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        prefix = ">>" if direction == "input" else "<<"
        timing = f" [{elapsed:.2f}s]" if elapsed is not None else ""
        body = json.dumps(self._snapshot_state(state), ensure_ascii=False, indent=2)
        logger.debug("[%s] %s %s%s:\n%s", step, prefix, direction, timing, body)

    @staticmethod
    def _snapshot_state(state: RunState) -> dict[str, Any]:
        """Return a compact serialisable view of the state for logging."""
        snapshot: dict[str, Any] = {
            "run_id": state.run_id,
            "status": state.status.value,
            "level": state.level,
            "cyclic": state.cyclic,
            "source_size": state.source_size,
            "has_transparency": state.has_transparency,
            "poses": len(state.poses),
            "frames": ["x" if frame is not None else "." for frame in state.frames],
            "image_calls": state.image_calls,
            "progress": f"{state.tracker.steps}/{state.total_steps}",
            "cost": round(state.tracker.cost, 6),
            "artifacts": state.artifacts,
        }
        return {key: value for key, value in snapshot.items() if not AnimationGenerator._is_empty(value)}

    @staticmethod
    def _is_empty(value: Any) -> bool:
        """Return True if the provided value is considered empty for logging."""
        if value is None:
            return True
        if isinstance(value, (str, bytes, list, tuple, set, dict)) and len(value) == 0:
            return True
        return False

    @staticmethod
    def _new_run_id() -> str:
        """Return a simple unique run identifier."""
        return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
