"""anigen package.

Turns a single character image and a motion description into a short
frame-by-frame animation by orchestrating a text planner and an image
model through a bisection schedule.
"""

from .config import GeneratorConfig  # noqa: F401
from .pipeline import AnimationGenerator  # noqa: F401

__all__ = ["AnimationGenerator", "GeneratorConfig"]
