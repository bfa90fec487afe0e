"""Command-line entry point for the animation generator."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys

from anigen.config import GeneratorConfig
from anigen.events import EventKind, RunEvent
from anigen.pipeline import AnimationGenerator


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Animate a character image from a motion description.")
    parser.add_argument("prompt", help="Motion to animate, e.g. 'waving its hand'.")
    parser.add_argument("image_path", help="Path to the character image.")
    parser.add_argument(
        "--cyclic",
        action="store_true",
        help="Make the last frame equal to the first so the animation loops seamlessly.",
    )
    parser.add_argument(
        "--no-plan",
        action="store_true",
        help="Skip the pose plan and use generic in-between prompts.",
    )
    parser.add_argument(
        "--format",
        choices=("zip", "gif", "both"),
        default="zip",
        help="Artifact to export once the frames are generated.",
    )
    parser.add_argument("--fps", type=int, default=None, help="Preview/GIF speed in frames per second (1-20).")
    parser.add_argument("--frames", type=int, default=None, help="Number of frames to generate.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def _print_event(event: RunEvent) -> None:
    if event.kind is EventKind.FRAME:
        print(f"Generating frames... {event.progress}/{event.total_steps}  (est. ${event.cost:.5f})")
    elif event.kind is EventKind.STATUS and event.message:
        print(event.message)


def main(argv: list[str] | None = None) -> int:
    """Entry point used by ``python run.py``."""
    args = parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = GeneratorConfig.from_env()
    overrides = {
        "export_formats": ("zip", "gif") if args.format == "both" else (args.format,),
    }
    if args.no_plan:
        overrides["use_pose_plan"] = False
    if args.fps is not None:
        overrides["preview_fps"] = args.fps
    if args.frames is not None:
        overrides["frame_count"] = args.frames
    config = dataclasses.replace(config, **overrides)

    generator = AnimationGenerator(config)
    generator.subscribe(_print_event)
    state = generator.run(prompt=args.prompt, image_path=args.image_path, cyclic=args.cyclic)

    print(f"Estimated cost: ${state.tracker.cost:.5f}")
    if state.error:
        print(state.error, file=sys.stderr)
        return 1
    for fmt, path in state.artifacts.items():
        print(f"{fmt}: {path}")
    missing = state.missing_indices()
    if missing:
        print(f"Frames left blank: {missing}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
