"""
benchmark.py
~~~~~~~~~~~~

Evaluate a trained network against a labeled dataset.
"""

import logging
from typing import NamedTuple, Optional, Tuple

import numpy as np

from digitnet.errors import MissingSampleError
from digitnet.functions import softmax
from digitnet.mnist_stream import MNISTRow, MNISTStream
from digitnet.network import Network
from digitnet.propagation import forward

logger = logging.getLogger(__name__)


class BenchmarkResult(NamedTuple):
    samples: int
    success_count: int
    error_count: int

    @property
    def accuracy(self) -> float:
        return self.success_count / self.samples if self.samples else 0.0

    @property
    def error_rate(self) -> float:
        return self.error_count / self.samples if self.samples else 0.0

    def to_dict(self) -> dict:
        return {
            'samples': self.samples,
            'success_count': self.success_count,
            'error_count': self.error_count,
            'accuracy': round(self.accuracy, 4),
            'error_rate': round(self.error_rate, 4),
        }


def predict(
    network: Network,
    x: np.ndarray,
    activation_function: str
) -> Tuple[int, np.ndarray]:
    """
    Classify one input.

    Returns:
        tuple: (predicted digit, softmax probabilities)
    """
    classification = softmax(forward(network, x, activation_function).logits)
    return int(np.argmax(classification)), classification


def evaluate(
    network: Network,
    stream: MNISTStream,
    activation_function: str
) -> BenchmarkResult:
    """
    Count correct and incorrect predictions over every row of a dataset.

    Args:
        network: The network to evaluate
        stream: An open dataset reader
        activation_function: Activation the network was trained with

    Raises:
        MissingSampleError: If a row inside the dataset cannot be read
    """
    samples = stream.count()
    success_count = 0

    logger.info(f"Benchmarking {network} on {samples} samples")

    for i in range(samples):
        row = stream.read_at(i)
        if row is None:
            raise MissingSampleError(f"No sample was found for row {i}")

        predicted, _ = predict(network, row.pixels, activation_function)
        if predicted == row.label:
            success_count += 1

    result = BenchmarkResult(samples, success_count, samples - success_count)
    logger.info(
        f"Benchmark finished: {result.success_count}/{result.samples} "
        f"correct ({result.accuracy:.2%})"
    )
    return result


def find_example(
    network: Network,
    stream: MNISTStream,
    activation_function: str,
    successful: bool = True,
    max_attempts: int = 100,
    rng: Optional[np.random.Generator] = None
) -> Optional[Tuple[int, MNISTRow, int, np.ndarray]]:
    """
    Pick random rows until one is predicted correctly (or incorrectly).

    Returns:
        tuple: (index, row, predicted digit, probabilities) or None if no
        matching row was found within max_attempts
    """
    if stream.count() == 0:
        return None

    rng = rng if rng is not None else np.random.default_rng()

    for attempt in range(max_attempts):
        index = int(rng.integers(0, stream.count()))
        row = stream.read_at(index)
        if row is None:
            raise MissingSampleError(f"No sample was found for row {index}")

        predicted, classification = predict(network, row.pixels, activation_function)
        if (predicted == row.label) == successful:
            logger.debug(f"Found example on attempt {attempt + 1}")
            return index, row, predicted, classification

    logger.warning(f"No matching example found after {max_attempts} attempts")
    return None
