"""End-to-end tests for the AnimationGenerator pipeline."""

from __future__ import annotations

import asyncio
import tempfile
import unittest
import zipfile
from pathlib import Path
from types import SimpleNamespace

import httpx

from anigen.config import GeneratorConfig
from anigen.errors import (
    GenerationServiceError,
    InsufficientFrames,
    InvalidPlan,
    NoImageReturned,
    RunInProgressError,
)
from anigen.events import EventKind
from anigen.nodes.assemble import AssembleAnimation
from anigen.pipeline import AnimationGenerator
from anigen.services.gemini_image import GeminiImageClient
from anigen.types import FramePayload, RunState, RunStatus

from fakes import FakeImageModel, FakeTextModel, frame_index_of, png_bytes, pose_records

PLAN_COST = 1000 / 1_000_000 * 0.35 + 500 / 1_000_000 * 0.70


class PipelineTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def make_generator(self, *, frame_count=9, records=None, image_model=None, **overrides):
        config = GeneratorConfig(
            runs_dir=str(self.tmp / "runs"),
            output_dir=str(self.tmp / "outputs"),
            frame_count=frame_count,
            **overrides,
        )
        self.text_model = FakeTextModel(records if records is not None else pose_records(frame_count))
        self.image_model = image_model or FakeImageModel()
        return AnimationGenerator(config, text_model=self.text_model, image_model=self.image_model)


class ScenarioTest(PipelineTestCase):
    """Covers the canonical scheduling scenarios for N=9."""

    def test_non_cyclic_all_succeed(self) -> None:
        generator = self.make_generator()
        state = generator.run(prompt="waving its hand", image_bytes=png_bytes())

        self.assertEqual(state.status, RunStatus.COMPLETE)
        self.assertIsNone(state.error)
        self.assertEqual(len(self.image_model.calls), 8)
        self.assertTrue(all(frame is not None for frame in state.frames))
        self.assertEqual(self.image_model.indices[:2], [0, 8])
        self.assertAlmostEqual(state.tracker.cost, PLAN_COST + 8 * 0.018)
        self.assertEqual(state.tracker.steps, state.total_steps)
        self.assertEqual(state.report.frames_resolved, 9)
        self.assertEqual(state.report.source_size, (64, 48))
        self.assertTrue(state.tracker.frozen)

    def test_cyclic_copies_first_frame(self) -> None:
        generator = self.make_generator()
        state = generator.run(prompt="jumping", image_bytes=png_bytes(), cyclic=True)

        self.assertEqual(state.status, RunStatus.COMPLETE)
        self.assertEqual(len(self.image_model.calls), 7)
        self.assertNotIn(8, self.image_model.indices)
        self.assertEqual(state.frames[8].data, state.frames[0].data)
        self.assertAlmostEqual(state.tracker.cost, PLAN_COST + 7 * 0.018)
        self.assertIn("loop seamlessly", self.text_model.prompts[0])

    def test_short_plan_aborts_before_image_calls(self) -> None:
        generator = self.make_generator(records=pose_records(8))
        state = generator.run(prompt="waving", image_bytes=png_bytes())

        self.assertEqual(state.status, RunStatus.FAILED)
        self.assertIsInstance(state.failure, InvalidPlan)
        self.assertEqual(self.image_model.calls, [])
        self.assertAlmostEqual(state.tracker.cost, PLAN_COST)
        self.assertTrue(state.error.startswith("Failed to generate animation."))
        self.assertTrue(all(frame is None for frame in state.frames))

    def test_failed_midpoint_blanks_descendants(self) -> None:
        generator = self.make_generator(image_model=FakeImageModel(fail_indices={4}))
        state = generator.run(prompt="waving", image_bytes=png_bytes())

        self.assertEqual(state.status, RunStatus.COMPLETE)
        self.assertEqual(self.image_model.indices, [0, 8, 4])
        self.assertEqual(state.missing_indices(), [1, 2, 3, 4, 5, 6, 7])
        self.assertLessEqual(9 - len(state.missing_indices()), 9 - 3)
        self.assertAlmostEqual(state.tracker.cost, PLAN_COST + 2 * 0.018)

    def test_failure_only_skips_ranges_touching_the_gap(self) -> None:
        generator = self.make_generator(image_model=FakeImageModel(fail_indices={2}))
        state = generator.run(prompt="waving", image_bytes=png_bytes())

        self.assertEqual(state.missing_indices(), [1, 2, 3])
        self.assertEqual(sorted(self.image_model.indices), [0, 2, 4, 5, 6, 7, 8])


class OrderingTest(PipelineTestCase):
    def test_midpoints_only_reference_their_range(self) -> None:
        generator = self.make_generator()
        state = generator.run(prompt="waving", image_bytes=png_bytes())

        resolved_before = set()
        for call in self.image_model.calls:
            if call.frame_index in (0, 8):
                resolved_before.add(call.frame_index)
                continue
            start = frame_index_of(call.references[0])
            end = frame_index_of(call.references[1])
            self.assertEqual(call.frame_index, (start + end) // 2)
            self.assertLess(start, call.frame_index)
            self.assertLess(call.frame_index, end)
            self.assertIn(start, resolved_before)
            self.assertIn(end, resolved_before)
            # The third reference is the uploaded artwork, not another slot.
            self.assertEqual(len(call.references), 3)
            self.assertEqual(call.references[2], state.source)
            resolved_before.add(call.frame_index)

    def test_levels_join_before_next_level_starts(self) -> None:
        image_model = FakeImageModel(delays={2: 0.02, 6: 0.0, 1: 0.0, 7: 0.01})
        generator = self.make_generator(image_model=image_model)
        generator.run(prompt="waving", image_bytes=png_bytes())

        levels = [[4], [2, 6], [1, 3, 5, 7]]
        position = {event: pos for pos, event in enumerate(image_model.timeline)}
        for current, following in zip(levels, levels[1:]):
            last_end = max(position[("end", index)] for index in current)
            first_start = min(position[("start", index)] for index in following)
            self.assertLess(last_end, first_start)

    def test_last_frame_uses_first_frame_and_upload(self) -> None:
        generator = self.make_generator()
        state = generator.run(prompt="waving", image_bytes=png_bytes())

        last_call = self.image_model.calls[1]
        self.assertEqual(last_call.frame_index, 8)
        self.assertEqual(frame_index_of(last_call.references[0]), 0)
        self.assertEqual(last_call.references[1], state.source)

    def test_delta_prompt_lists_changed_and_unchanged_parts(self) -> None:
        records = pose_records(9, static_parts=("head", "torso"))
        generator = self.make_generator(records=records)
        generator.run(prompt="waving", image_bytes=png_bytes())

        mid_call = self.image_model.calls[2]
        self.assertEqual(mid_call.frame_index, 4)
        self.assertIn("head, torso", mid_call.instruction)
        self.assertIn("  - left_arm: left_arm pose 4", mid_call.instruction)
        self.assertNotIn("  - head:", mid_call.instruction)


class FailureTest(PipelineTestCase):
    def test_first_frame_failure_is_fatal(self) -> None:
        generator = self.make_generator(image_model=FakeImageModel(fail_indices={0}))
        state = generator.run(prompt="waving", image_bytes=png_bytes())

        self.assertEqual(state.status, RunStatus.FAILED)
        self.assertIsInstance(state.failure, NoImageReturned)
        self.assertEqual(self.image_model.indices, [0])
        self.assertFalse(state.is_loading)

    def test_last_frame_failure_is_fatal(self) -> None:
        generator = self.make_generator(image_model=FakeImageModel(fail_indices={8}))
        state = generator.run(prompt="waving", image_bytes=png_bytes())

        self.assertEqual(state.status, RunStatus.FAILED)
        self.assertIsInstance(state.failure, NoImageReturned)
        self.assertEqual(self.image_model.indices, [0, 8])

    def test_cyclic_run_keeps_copied_endpoint(self) -> None:
        # The copied last slot counts as a resolved frame even when every
        # interior slot is lost.
        generator = self.make_generator(frame_count=3, image_model=FakeImageModel(fail_indices={1}))
        state = generator.run(prompt="waving", image_bytes=png_bytes(), cyclic=True)

        self.assertEqual(state.status, RunStatus.COMPLETE)
        self.assertEqual(state.missing_indices(), [1])
        self.assertEqual(self.image_model.indices, [0, 1])

    def test_assembly_needs_two_frames(self) -> None:
        generator = self.make_generator()
        state = RunState(run_id="lonely", prompt="waving", cyclic=False, frame_count=3, use_pose_plan=False)
        state.frames[0] = FramePayload(data=png_bytes())
        node = AssembleAnimation(
            run_id=state.run_id,
            logger=generator.logger,
            events=generator.events,
            output_dir=self.tmp / "outputs",
            export_formats=("zip",),
            gif_delay_ms=200,
        )

        with self.assertRaises(InsufficientFrames):
            asyncio.run(node.run(state))
        self.assertEqual(state.artifacts, {})

    def test_bad_upload_never_starts(self) -> None:
        generator = self.make_generator()
        state = generator.run(prompt="waving", image_bytes=b"definitely not an image")

        self.assertEqual(state.status, RunStatus.FAILED)
        self.assertEqual(self.text_model.prompts, [])
        self.assertEqual(self.image_model.calls, [])

    def test_missing_prompt_is_rejected(self) -> None:
        generator = self.make_generator()
        with self.assertRaises(ValueError):
            generator.run(prompt="   ", image_bytes=png_bytes())

    def test_interior_retry_recovers_frame(self) -> None:
        generator = self.make_generator(image_model=FakeImageModel(fail_once={4}), interior_retries=1)
        state = generator.run(prompt="waving", image_bytes=png_bytes())

        self.assertEqual(state.missing_indices(), [])
        self.assertEqual(self.image_model.indices.count(4), 2)
        self.assertAlmostEqual(state.tracker.cost, PLAN_COST + 8 * 0.018)


class PlanlessModeTest(PipelineTestCase):
    def test_generic_prompts_without_plan(self) -> None:
        generator = self.make_generator(use_pose_plan=False)
        state = generator.run(prompt="waving", image_bytes=png_bytes())

        self.assertEqual(state.status, RunStatus.COMPLETE)
        self.assertEqual(self.text_model.prompts, [])
        self.assertEqual(state.total_steps, 9)
        self.assertEqual(state.tracker.steps, 9)
        self.assertAlmostEqual(state.tracker.cost, 8 * 0.018)
        interior = [call for call in self.image_model.calls if call.frame_index not in (0, 8)]
        self.assertTrue(all(len(call.references) == 2 for call in interior))
        self.assertTrue(all("temporally centered" in call.instruction for call in interior))


class EventsAndArtifactsTest(PipelineTestCase):
    def test_progress_and_cost_are_monotonic(self) -> None:
        generator = self.make_generator(image_model=FakeImageModel(fail_indices={6}))
        events = []
        generator.subscribe(events.append)
        generator.run(prompt="waving", image_bytes=png_bytes())

        progress = [event.progress for event in events]
        costs = [event.cost for event in events]
        self.assertEqual(progress, sorted(progress))
        self.assertEqual(costs, sorted(costs))
        self.assertEqual(events[-1].status, RunStatus.COMPLETE.value)
        self.assertIn(6, [event.frame_index for event in events if event.kind is EventKind.FRAME_FAILED])

    def test_zip_artifact_and_run_logs(self) -> None:
        generator = self.make_generator(image_model=FakeImageModel(fail_indices={3}))
        state = generator.run(prompt="Waving its Hand!", image_bytes=png_bytes())

        archive_path = Path(state.artifacts["zip"])
        self.assertEqual(archive_path.name, "waving_its_hand_.zip")
        with zipfile.ZipFile(archive_path) as archive:
            names = archive.namelist()
        self.assertEqual(names, [f"frame_{i:02d}.png" for i in range(9) if i != 3])

        run_dir = self.tmp / "runs" / state.run_id
        self.assertTrue((run_dir / "PlanAnimation-prompt.txt").exists())
        self.assertTrue((run_dir / "BisectFrames-frame04-prompt.txt").exists())
        self.assertTrue((run_dir / "events.jsonl").exists())
        self.assertTrue((self.tmp / "outputs" / state.run_id / "report.json").exists())

    def test_preview_player_over_last_run(self) -> None:
        generator = self.make_generator(image_model=FakeImageModel(fail_indices={1}))
        state = generator.run(prompt="waving", image_bytes=png_bytes())

        player = generator.player()
        self.assertEqual(frame_index_of(player.current()), 0)
        self.assertEqual(frame_index_of(player.tick()), 0)
        self.assertEqual(frame_index_of(player.tick()), 2)
        self.assertIs(player.current(), state.frames[2])


def inline_image_response(data: bytes):
    part = SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type="image/png"), text=None)
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


class TimingOutGenai:
    """Stands in for ``genai.Client``; the ``timeout_on``-th call (1-based) times out."""

    def __init__(self, timeout_on: int) -> None:
        self.calls = 0
        self._timeout_on = timeout_on
        self.aio = SimpleNamespace(models=SimpleNamespace(generate_content=self._generate_content))

    async def _generate_content(self, **kwargs):
        self.calls += 1
        if self.calls == self._timeout_on:
            raise httpx.ReadTimeout("timed out")
        return inline_image_response(png_bytes())


class TransportFailureTest(PipelineTestCase):
    def make_remote_generator(self, timeout_on: int) -> AnimationGenerator:
        image_model = GeminiImageClient(api_key="key", use_mock=False)
        image_model._client = TimingOutGenai(timeout_on)
        return self.make_generator(image_model=image_model)

    def test_interior_timeout_leaves_slot_blank(self) -> None:
        # Calls 1 and 2 are the endpoints, call 3 is frame 4.
        generator = self.make_remote_generator(timeout_on=3)
        state = generator.run(prompt="waving", image_bytes=png_bytes())

        self.assertEqual(state.status, RunStatus.COMPLETE)
        self.assertIsNone(state.failure)
        self.assertEqual(state.missing_indices(), [1, 2, 3, 4, 5, 6, 7])
        self.assertEqual(generator.image_model._client.calls, 3)
        self.assertAlmostEqual(state.tracker.cost, PLAN_COST + 2 * 0.018)

    def test_endpoint_timeout_fails_the_run(self) -> None:
        generator = self.make_remote_generator(timeout_on=1)
        state = generator.run(prompt="waving", image_bytes=png_bytes())

        self.assertEqual(state.status, RunStatus.FAILED)
        self.assertIsInstance(state.failure, GenerationServiceError)
        self.assertFalse(state.is_loading)
        self.assertTrue(state.tracker.frozen)

    def test_unexpected_error_still_finalises_state(self) -> None:
        generator = self.make_generator(image_model=FakeImageModel(errors={0: RuntimeError("socket closed")}))
        with self.assertRaises(RuntimeError):
            generator.run(prompt="waving", image_bytes=png_bytes())

        state = generator.last_state
        self.assertEqual(state.status, RunStatus.FAILED)
        self.assertFalse(state.is_loading)
        self.assertTrue(state.tracker.frozen)
        self.assertEqual(state.error, "Failed to generate animation. socket closed")

    def test_unexpected_interior_error_is_not_swallowed(self) -> None:
        generator = self.make_generator(image_model=FakeImageModel(errors={4: KeyError("frame")}))
        with self.assertRaises(KeyError):
            generator.run(prompt="waving", image_bytes=png_bytes())
        self.assertEqual(generator.last_state.status, RunStatus.FAILED)


class ConcurrencyTest(unittest.IsolatedAsyncioTestCase):
    async def test_second_concurrent_run_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config = GeneratorConfig(runs_dir=f"{tmp}/runs", output_dir=f"{tmp}/outputs")
            generator = AnimationGenerator(
                config,
                text_model=FakeTextModel(pose_records(9)),
                image_model=FakeImageModel(),
            )
            first, second = await asyncio.gather(
                generator.arun(prompt="waving", image_bytes=png_bytes()),
                generator.arun(prompt="waving", image_bytes=png_bytes()),
                return_exceptions=True,
            )

        self.assertEqual(first.status, RunStatus.COMPLETE)
        self.assertIsInstance(second, RunInProgressError)


class MockModeTest(PipelineTestCase):
    def test_mock_services_produce_real_gif(self) -> None:
        config = GeneratorConfig(
            runs_dir=str(self.tmp / "runs"),
            output_dir=str(self.tmp / "outputs"),
            enable_mock_generation=True,
            export_formats=("zip", "gif"),
        )
        generator = AnimationGenerator(config)
        state = generator.run(prompt="waving", image_bytes=png_bytes((80, 60), (10, 20, 30, 0)))

        self.assertEqual(state.status, RunStatus.COMPLETE)
        self.assertTrue(state.has_transparency)
        self.assertTrue(Path(state.artifacts["gif"]).exists())
        exported = generator.export_gif(output_dir=self.tmp / "downloads")
        self.assertEqual(exported.name, "waving.gif")


if __name__ == "__main__":
    unittest.main()
