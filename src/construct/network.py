"""Decision functions that map a cube's position to a force vector.

A decision function is any callable taking the current position (three
floats) and returning a sequence of at least three numbers.  Cubes only
call it; they never inspect or mutate it.

DenseNetwork is a small numpy feed-forward network used by the demo driver.
It keeps the forward()/get_output() pair for callers that drive it the
two-step way, and is itself callable.
"""

from __future__ import annotations

from typing import Callable, Sequence

import numpy as np

DecisionFunction = Callable[[Sequence[float]], Sequence[float]]


def _leaky_relu(x: np.ndarray) -> np.ndarray:
    return np.where(x > 0, x, 0.01 * x)


def _relu(x: np.ndarray) -> np.ndarray:
    return np.maximum(x, 0.0)


def _linear(x: np.ndarray) -> np.ndarray:
    return x


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-x))


ACTIVATIONS: dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "leakyrelu": _leaky_relu,
    "relu": _relu,
    "linear": _linear,
    "sigmoid": _sigmoid,
    "tanh": np.tanh,
}


class DenseNetwork:
    """Fully connected feed-forward network.

    Args:
        layer_sizes: (width, height) per layer, input layer first.  A layer
            holds width * height neurons.
        activations: activation name per layer; the input layer's entry is
            ignored.
        use_bias: per-layer bias flag (defaults to all True).
        seed: seed for weight initialisation.
    """

    def __init__(
        self,
        layer_sizes: Sequence[tuple[int, int]],
        activations: Sequence[str],
        use_bias: Sequence[bool] | None = None,
        seed: int | None = None,
    ) -> None:
        if len(layer_sizes) < 2:
            raise ValueError("network needs at least an input and an output layer")
        if len(activations) != len(layer_sizes):
            raise ValueError(
                f"{len(activations)} activations for {len(layer_sizes)} layers"
            )
        unknown = [a for a in activations if a not in ACTIVATIONS]
        if unknown:
            raise ValueError(f"unknown activation(s): {', '.join(unknown)}")
        if use_bias is None:
            use_bias = [True] * len(layer_sizes)
        if len(use_bias) != len(layer_sizes):
            raise ValueError(f"{len(use_bias)} bias flags for {len(layer_sizes)} layers")

        self.sizes = [int(w) * int(h) for w, h in layer_sizes]
        if any(n <= 0 for n in self.sizes):
            raise ValueError(f"layer sizes must be positive: {list(layer_sizes)}")
        self.activations = list(activations)

        rng = np.random.default_rng(seed)
        self.weights: list[np.ndarray] = []
        self.biases: list[np.ndarray] = []
        for n_in, n_out, bias in zip(self.sizes, self.sizes[1:], use_bias[1:]):
            scale = np.sqrt(2.0 / n_in)
            self.weights.append(rng.normal(0.0, scale, size=(n_out, n_in)))
            if bias:
                self.biases.append(rng.uniform(-0.5, 0.5, size=n_out))
            else:
                self.biases.append(np.zeros(n_out))
        self._output = np.zeros(self.sizes[-1])

    @property
    def input_size(self) -> int:
        return self.sizes[0]

    @property
    def output_size(self) -> int:
        return self.sizes[-1]

    def _propagate(self, inputs) -> np.ndarray:
        x = np.asarray(inputs, dtype=float).reshape(-1)
        if x.size != self.input_size:
            raise ValueError(f"expected {self.input_size} inputs, got {x.size}")
        for w, b, name in zip(self.weights, self.biases, self.activations[1:]):
            x = ACTIVATIONS[name](w @ x + b)
        return x

    def forward(self, inputs) -> None:
        """Run the network; ``inputs`` may be flat or nested (e.g. [[x, y, z]])."""
        self._output = self._propagate(inputs)

    def get_output(self) -> list[float]:
        return self._output.tolist()

    def __call__(self, position: Sequence[float]) -> list[float]:
        out = self._propagate(position)
        self._output = out
        return out.tolist()

    def __repr__(self) -> str:
        shape = "-".join(str(n) for n in self.sizes)
        return f"DenseNetwork({shape}, {'/'.join(self.activations[1:])})"
