"""Utilities for loading and rendering the prompt templates in ``anigen/prompts``."""

from __future__ import annotations

import json
import re
from functools import lru_cache
from pathlib import Path
from typing import Mapping

from ..types import PoseDescriptor

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
_PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


@lru_cache(maxsize=None)
def _read_template(name: str) -> str:
    return (PROMPTS_DIR / f"{name}.txt").read_text(encoding="utf-8")


def load_prompt(name: str, variables: Mapping[str, object] | None = None) -> str:
    """Return the rendered prompt text for ``name``.

    Every ``{{ placeholder }}`` in the template must be supplied; a missing
    variable raises ``KeyError`` so half-rendered prompts never reach a model.
    """
    template = _read_template(name)
    values = dict(variables or {})

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in values:
            raise KeyError(f"Prompt template '{name}' needs a value for '{key}'")
        value = values[key]
        return "" if value is None else str(value)

    return _PLACEHOLDER_PATTERN.sub(_replace, template).strip()


def pose_json(pose: PoseDescriptor) -> str:
    """Render a pose descriptor as the fenced JSON block used in frame prompts."""
    return "```json\n" + json.dumps(pose.as_dict(), indent=2, ensure_ascii=False) + "\n```"


__all__ = ["load_prompt", "pose_json", "PROMPTS_DIR"]
