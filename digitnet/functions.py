"""
functions.py
~~~~~~~~~~~~

Activation functions, their derivatives, the softmax/cross-entropy loss
pair and the random helpers used to initialize and shuffle.

All functions are pure and work element-wise on numpy arrays as well as
on plain floats.
"""

from typing import Callable, Dict, Optional, Tuple

import numpy as np

from digitnet.errors import ActivationFunctionError

ActivationPair = Tuple[Callable, Callable]

# Floor applied to probabilities before taking the log
EPSILON = 1e-15

NUM_CLASSES = 10


def sigmoid(z):
    """The sigmoid function."""
    return 1.0 / (1.0 + np.exp(-z))


def sigmoid_prime(a):
    """
    Derivative of the sigmoid function.

    Takes the activation ``a = sigmoid(z)``, not the logit, since the
    backward pass only keeps activations around.
    """
    return a * (1.0 - a)


def relu(z):
    """Rectified linear unit."""
    return np.maximum(0.0, z)


def relu_prime(a):
    """Derivative of ReLU, evaluated at the activation."""
    return np.where(np.asarray(a) > 0, 1.0, 0.0)


def softmax(x: np.ndarray) -> np.ndarray:
    """
    Normalize a vector of logits into a probability distribution.

    The maximum is subtracted before exponentiating so large logits
    cannot overflow.
    """
    x = np.asarray(x, dtype=float)
    exp = np.exp(x - np.max(x))
    return exp / np.sum(exp)


def cross_entropy(expected: np.ndarray, actual: np.ndarray) -> float:
    """
    Cross-entropy between a target distribution and a prediction.

    Args:
        expected: Target distribution (usually one-hot)
        actual: Predicted probabilities

    Returns:
        float: Non-negative loss, 0 only for a perfect prediction
    """
    actual = np.maximum(np.asarray(actual, dtype=float), EPSILON)
    return float(-np.sum(np.asarray(expected) * np.log(actual)))


def one_hot(index: int, width: int = NUM_CLASSES) -> np.ndarray:
    """
    One-hot encode a class index.

    Raises:
        IndexError: If index is outside [0, width)
    """
    if not 0 <= index < width:
        raise IndexError(f"Class index {index} out of range [0, {width})")
    encoded = np.zeros(width)
    encoded[index] = 1.0
    return encoded


def _get_rng(rng: Optional[np.random.Generator]) -> np.random.Generator:
    return rng if rng is not None else np.random.default_rng()


def randn(size, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Standard normal samples using the Box-Muller transform."""
    rng = _get_rng(rng)
    # 1 - U keeps the first uniform in (0, 1] so the log is finite
    u1 = 1.0 - rng.random(size)
    u2 = rng.random(size)
    return np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2)


def he_init(fan_in: int, size, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """He initialization for ReLU networks: N(0, 1) * sqrt(2 / fan_in)."""
    return randn(size, rng) * np.sqrt(2.0 / fan_in)


def uniform_init(size, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Uniform initialization in [-1, 1]."""
    return _get_rng(rng).random(size) * 2.0 - 1.0


def shuffle_indexes(size: int, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Return a random permutation of range(size)."""
    return _get_rng(rng).permutation(size)


ACTIVATIONS: Dict[str, ActivationPair] = {
    'sigmoid': (sigmoid, sigmoid_prime),
    'relu': (relu, relu_prime),
}


def get_activation(name: str) -> ActivationPair:
    """
    Look up an activation function and its derivative by name.

    Args:
        name: 'sigmoid' or 'relu'

    Returns:
        tuple: (activation, derivative)

    Raises:
        ActivationFunctionError: If the name is not recognized
    """
    try:
        return ACTIVATIONS[name]
    except (KeyError, TypeError):
        raise ActivationFunctionError(
            f"Invalid activation function: {name!r} "
            f"(expected one of {sorted(ACTIVATIONS)})"
        ) from None
