"""
network.py
~~~~~~~~~~

The network model: an ordered list of fully connected layers.

Each layer stores its parameters as a weight matrix of shape
``(neurons, inputs)`` and a bias vector of shape ``(neurons,)``, so
neuron ``n`` of a layer is row ``n`` of the matrix plus ``biases[n]``.
Shapes are checked when a layer or network is built and never change
afterwards; training only updates the values in place.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from digitnet.functions import get_activation, he_init, uniform_init

logger = logging.getLogger(__name__)


class Layer:
    """A fully connected layer of neurons sharing the same input width."""

    def __init__(self, weights, biases):
        weights = np.array(weights, dtype=float)
        biases = np.array(biases, dtype=float)

        if weights.ndim != 2:
            raise ValueError(
                f"Layer weights must be 2-dimensional, got shape {weights.shape}"
            )
        if biases.shape != (weights.shape[0],):
            raise ValueError(
                f"Layer biases must have shape ({weights.shape[0]},), "
                f"got {biases.shape}"
            )

        self.weights = weights
        self.biases = biases

    @property
    def input_size(self) -> int:
        return self.weights.shape[1]

    @property
    def output_size(self) -> int:
        return self.weights.shape[0]

    def neuron(self, n: int) -> Tuple[np.ndarray, float]:
        """Return the (weights, bias) pair of neuron n."""
        return self.weights[n], float(self.biases[n])

    def __repr__(self) -> str:
        return f"Layer({self.input_size} -> {self.output_size})"


class Network:
    """
    Multi-layer perceptron parameters.

    The network holds parameters only; the activation function is chosen
    by the caller of the forward/backward passes.
    """

    def __init__(self, layers: Sequence[Layer]):
        """
        Args:
            layers: Layers in order from input to output

        Raises:
            ValueError: If there are no layers or consecutive layer
                widths do not line up
        """
        if not layers:
            raise ValueError("A network needs at least one layer")

        for i in range(1, len(layers)):
            if layers[i].input_size != layers[i - 1].output_size:
                raise ValueError(
                    f"Layer {i} expects {layers[i].input_size} inputs but "
                    f"layer {i - 1} has {layers[i - 1].output_size} neurons"
                )

        self.layers: List[Layer] = list(layers)

    @classmethod
    def create(
        cls,
        sizes: Sequence[int],
        activation_function: str = 'relu',
        rng: Optional[np.random.Generator] = None
    ) -> 'Network':
        """
        Build a randomly initialized network.

        ReLU networks get He-initialized weights, sigmoid networks
        uniform weights in [-1, 1]. Biases are uniform in [-1, 1] for both.

        Args:
            sizes: Layer widths including the input, e.g. [784, 64, 32, 10]
            activation_function: 'sigmoid' or 'relu'
            rng: Optional random generator for reproducible weights

        Raises:
            ActivationFunctionError: For an unknown activation function
            ValueError: If fewer than two sizes are given
        """
        get_activation(activation_function)

        if len(sizes) < 2 or any(int(size) < 1 for size in sizes):
            raise ValueError(
                f"Invalid architecture {list(sizes)}: need at least an input "
                "and an output layer, all sizes positive"
            )

        logger.info(
            f"Initializing new network {list(sizes)} with "
            f"{activation_function} activation function"
        )

        layers = []
        for fan_in, fan_out in zip(sizes[:-1], sizes[1:]):
            if activation_function == 'relu':
                weights = he_init(fan_in, (fan_out, fan_in), rng)
            else:
                weights = uniform_init((fan_out, fan_in), rng)
            layers.append(Layer(weights, uniform_init(fan_out, rng)))

        return cls(layers)

    @property
    def sizes(self) -> List[int]:
        """Widths of the input and every layer."""
        return [self.layers[0].input_size] + [
            layer.output_size for layer in self.layers
        ]

    @property
    def num_layers(self) -> int:
        return len(self.layers)

    def copy(self) -> 'Network':
        return Network([
            Layer(layer.weights.copy(), layer.biases.copy())
            for layer in self.layers
        ])

    def __repr__(self) -> str:
        return f"Network({self.sizes})"
