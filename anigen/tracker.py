"""Cost and progress accounting for a generation run."""

from __future__ import annotations

import threading

# Published list prices used for estimation only.
INPUT_PRICE_PER_MILLION_TOKENS = 0.35
OUTPUT_PRICE_PER_MILLION_TOKENS = 0.70
IMAGE_PRICE_PER_IMAGE = 0.018


class CostTracker:
    """Accumulates estimated spend and completed steps for one run.

    Both counters only ever grow while the tracker is live. ``freeze`` is
    called when the run ends; any later update raises ``RuntimeError``.
    """

    def __init__(
        self,
        input_price_per_million: float = INPUT_PRICE_PER_MILLION_TOKENS,
        output_price_per_million: float = OUTPUT_PRICE_PER_MILLION_TOKENS,
        image_price: float = IMAGE_PRICE_PER_IMAGE,
    ) -> None:
        self._input_price = input_price_per_million
        self._output_price = output_price_per_million
        self._image_price = image_price
        self._lock = threading.Lock()
        self._cost = 0.0
        self._steps = 0
        self._frozen = False

    @property
    def cost(self) -> float:
        with self._lock:
            return self._cost

    @property
    def steps(self) -> int:
        with self._lock:
            return self._steps

    @property
    def frozen(self) -> bool:
        return self._frozen

    def reset(self) -> None:
        with self._lock:
            self._cost = 0.0
            self._steps = 0
            self._frozen = False

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    def add_token_usage(self, prompt_tokens: int, completion_tokens: int) -> float:
        """Bill a token-priced call and return the amount added."""
        if prompt_tokens < 0 or completion_tokens < 0:
            raise ValueError("Token counts cannot be negative")
        amount = (prompt_tokens / 1_000_000) * self._input_price
        amount += (completion_tokens / 1_000_000) * self._output_price
        self._add(amount)
        return amount

    def add_image_calls(self, count: int) -> float:
        """Bill ``count`` flat-priced image calls and return the amount added."""
        if count < 0:
            raise ValueError("Image call count cannot be negative")
        amount = count * self._image_price
        self._add(amount)
        return amount

    def advance(self, steps: int = 1) -> int:
        """Increment the progress counter and return its new value."""
        if steps < 0:
            raise ValueError("Progress cannot move backwards")
        with self._lock:
            self._ensure_live()
            self._steps += steps
            return self._steps

    def _add(self, amount: float) -> None:
        with self._lock:
            self._ensure_live()
            self._cost += amount

    def _ensure_live(self) -> None:
        if self._frozen:
            raise RuntimeError("Cost tracker is frozen; the run has already ended.")
