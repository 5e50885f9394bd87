"""Two-layer perceptron used inside the transformer layers."""

from __future__ import annotations

import math
from enum import Enum
from typing import Any

import numpy as np

_erf = np.vectorize(math.erf, otypes=[float])


class Activation(Enum):
    """Activation functions available between the two linear layers."""

    GELU = 1
    RELU = 2

    @classmethod
    def parse(cls, name: str | Activation) -> Activation:
        """Return the activation named by ``name``, ignoring case."""
        if isinstance(name, Activation):
            return name
        try:
            return cls[str(name).upper()]
        except KeyError:
            raise ValueError(f"Unknown activation function: {name}") from None

    def apply(self, x: Any) -> np.ndarray:
        """Apply the activation element-wise."""
        x = np.asarray(x, dtype=float)
        if self is Activation.GELU:
            return 0.5 * x * (1.0 + _erf(x / math.sqrt(2.0)))
        return np.maximum(x, 0.0)


class MLP:
    """Two bias-free linear layers with an activation in between.

    ``linear1`` has shape ``(size, hidden_size)`` and ``linear2`` has shape
    ``(hidden_size, size)``; inputs are multiplied from the left.
    """

    def __init__(
        self,
        size: int,
        hidden_size: int,
        activation: Activation | str = Activation.GELU,
        initialize_output_to_zero: bool = False,
        recompute: bool = False,
        rng: np.random.Generator | int | None = None,
    ) -> None:
        if size <= 0 or hidden_size <= 0:
            raise ValueError("size and hidden_size must be positive")
        generator = np.random.default_rng(rng)
        self.size = size
        self.hidden_size = hidden_size
        self.activation = Activation.parse(activation)
        self.recompute = recompute
        self.linear1 = _init_weight(generator, size, hidden_size)
        if initialize_output_to_zero:
            self.linear2 = np.zeros((hidden_size, size))
        else:
            self.linear2 = _init_weight(generator, hidden_size, size)

    def __repr__(self) -> str:
        return (
            f"MLP(size={self.size}, hidden_size={self.hidden_size}, "
            f"activation={self.activation.name}, recompute={self.recompute})"
        )

    def _compute(self, x: np.ndarray) -> np.ndarray:
        return self.activation.apply(x @ self.linear1) @ self.linear2

    def __call__(
        self,
        x: Any,
        add_input: bool = False,
        allow_inplace: bool = False,
        save_peak_mem_factor: int | None = None,
    ) -> np.ndarray:
        """Run the MLP over the last axis of ``x``.

        All leading axes are treated as a batch. With ``save_peak_mem_factor``
        greater than one the batch is processed in that many chunks.
        ``allow_inplace`` is accepted for interface compatibility; the input
        is never modified.
        """
        x = np.asarray(x, dtype=float)
        if x.ndim == 0:
            raise ValueError("input must have at least one dimension")
        if x.shape[-1] != self.size:
            raise ValueError(
                f"expected last dimension {self.size}, got {x.shape[-1]}"
            )
        shape = x.shape
        flat = x.reshape(int(np.prod(shape[:-1], dtype=int)), shape[-1])

        if save_peak_mem_factor is not None and save_peak_mem_factor > 1:
            split = max(1, -(-flat.shape[0] // save_peak_mem_factor))
            parts = []
            for start in range(0, flat.shape[0], split):
                chunk = flat[start:start + split]
                out = self._compute(chunk)
                parts.append(out + chunk if add_input else out)
            result = np.concatenate(parts, axis=0) if parts else np.zeros_like(flat)
        else:
            result = self._compute(flat)
            if add_input:
                result = result + flat

        return result.reshape(shape)


def _init_weight(rng: np.random.Generator, fan_in: int, fan_out: int) -> np.ndarray:
    bound = 1.0 / math.sqrt(fan_in)
    return rng.uniform(-bound, bound, size=(fan_in, fan_out))