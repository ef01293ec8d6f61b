"""
propagation.py
~~~~~~~~~~~~~~

Forward and backward passes for a single sample.

The last layer is left unactivated: ``forward`` returns raw logits and
softmax is applied by the caller. With a softmax + cross-entropy loss on
top of those logits the output error reduces to
``softmax(logits) - one_hot(label)``, which is what ``backward`` uses.
"""

from typing import List, NamedTuple

import numpy as np

from digitnet.functions import cross_entropy, get_activation, one_hot, softmax
from digitnet.network import Network


class Sample(NamedTuple):
    input: np.ndarray
    label: int


class ForwardCache(NamedTuple):
    """Activations per layer; ``activations[0]`` is the input."""
    activations: List[np.ndarray]

    @property
    def logits(self) -> np.ndarray:
        return self.activations[-1]


class Gradients:
    """
    Per-parameter gradients mirroring the structure of a network.

    ``dws[l]`` has the shape of ``network.layers[l].weights`` and
    ``dbs[l]`` the shape of ``network.layers[l].biases``.
    """

    def __init__(self, dws: List[np.ndarray], dbs: List[np.ndarray], loss: float = 0.0):
        if len(dws) != len(dbs):
            raise ValueError(
                f"Got {len(dws)} weight gradients but {len(dbs)} bias gradients"
            )
        for l, (dw, db) in enumerate(zip(dws, dbs)):
            if dw.ndim != 2 or db.shape != (dw.shape[0],):
                raise ValueError(
                    f"Gradient shapes for layer {l} do not match: "
                    f"{dw.shape} and {db.shape}"
                )
        self.dws = dws
        self.dbs = dbs
        self.loss = loss

    @classmethod
    def zeros_like(cls, network: Network) -> 'Gradients':
        return cls(
            [np.zeros_like(layer.weights) for layer in network.layers],
            [np.zeros_like(layer.biases) for layer in network.layers],
        )

    def accumulate(self, other: 'Gradients') -> 'Gradients':
        """Add another gradient element-wise, in place."""
        for dw, other_dw in zip(self.dws, other.dws):
            dw += other_dw
        for db, other_db in zip(self.dbs, other.dbs):
            db += other_db
        self.loss += other.loss
        return self

    def scaled(self, factor: float) -> 'Gradients':
        """Return a copy with every gradient and the loss multiplied by factor."""
        return Gradients(
            [dw * factor for dw in self.dws],
            [db * factor for db in self.dbs],
            self.loss * factor,
        )


def forward(network: Network, x: np.ndarray, activation_function: str) -> ForwardCache:
    """
    Compute the activations of every layer for one input vector.

    Args:
        network: The network to evaluate
        x: Input vector, its length must match the first layer's inputs
        activation_function: Hidden layer nonlinearity, 'sigmoid' or 'relu'

    Returns:
        ForwardCache: Input followed by each layer's activations, the
        last entry being the unactivated logits
    """
    activation, _ = get_activation(activation_function)
    last = network.num_layers - 1

    activations = [np.asarray(x, dtype=float)]
    for l, layer in enumerate(network.layers):
        z = layer.weights @ activations[l] + layer.biases
        activations.append(z if l == last else activation(z))

    return ForwardCache(activations)


def backward(network: Network, sample: Sample, activation_function: str) -> Gradients:
    """
    Backpropagate the cross-entropy loss of one labeled sample.

    Returns:
        Gradients: dC/dw and dC/db for every layer plus the sample's loss
    """
    _, activation_prime = get_activation(activation_function)

    activations = forward(network, sample.input, activation_function).activations
    y = one_hot(sample.label, network.layers[-1].output_size)
    classification = softmax(activations[-1])

    num_layers = network.num_layers
    dws: List[np.ndarray] = [None] * num_layers
    dbs: List[np.ndarray] = [None] * num_layers

    # δ^L = softmax(z^L) - y
    delta = classification - y
    dbs[-1] = delta
    dws[-1] = np.outer(delta, activations[-2])

    for l in range(num_layers - 2, -1, -1):
        # δ^l = (W^(l+1)^T · δ^(l+1)) * σ'(a^l)
        delta = (network.layers[l + 1].weights.T @ delta) * activation_prime(activations[l + 1])
        dbs[l] = delta
        dws[l] = np.outer(delta, activations[l])

    return Gradients(dws, dbs, cross_entropy(y, classification))
