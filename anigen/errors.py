"""
Exception hierarchy for anigen.

Every error a run can surface to the user inherits from AnimationError so
callers can catch the whole family with a single except clause.
"""

from __future__ import annotations

from typing import Optional, Tuple


class AnimationError(Exception):
    """Base exception for all anigen errors."""


class ImagePreprocessError(AnimationError):
    """Raised when an uploaded image cannot be read or decoded."""


class InvalidPlan(AnimationError):
    """Raised when the planner returns data of the wrong shape or length.

    ``usage`` holds the ``(prompt_tokens, completion_tokens)`` pair of the
    call that produced the rejected plan, if the service reported one.
    """

    def __init__(self, message: str, usage: Optional[Tuple[int, int]] = None) -> None:
        super().__init__(message)
        self.usage = usage


class NoImageReturned(AnimationError):
    """Raised when an image call's response contains no image part."""


class GenerationServiceError(AnimationError):
    """Raised when a generation service call fails in transport or on the API side."""


class InsufficientFrames(AnimationError):
    """Raised when fewer than two frames were resolved by the end of a run."""


class RunInProgressError(AnimationError):
    """Raised when a run is started while another run is still active."""
