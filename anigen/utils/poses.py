"""Helpers for comparing pose descriptors between frames."""

from __future__ import annotations

from typing import List, Tuple

from ..types import BODY_PARTS, PoseDescriptor


def diff_poses(start: PoseDescriptor, target: PoseDescriptor) -> Tuple[List[str], List[str]]:
    """Split the body parts into those that change from ``start`` to ``target`` and those that do not.

    ``notes`` is metadata and never counts as a body part.
    """
    changed: List[str] = []
    unchanged: List[str] = []
    for part in BODY_PARTS:
        if start.part(part) != target.part(part):
            changed.append(part)
        else:
            unchanged.append(part)
    return changed, unchanged


def describe_delta(start: PoseDescriptor, target: PoseDescriptor) -> Tuple[str, str]:
    """Render the ``(changed, unchanged)`` sections of a delta prompt."""
    changed, unchanged = diff_poses(start, target)
    if changed:
        changed_text = "\n".join(f"  - {part}: {target.part(part)}" for part in changed)
    else:
        changed_text = f"  - No direct pose changes, but follow the 'notes' for this frame: {target.notes}"
    unchanged_text = ", ".join(unchanged) if unchanged else "All other parts"
    return changed_text, unchanged_text
