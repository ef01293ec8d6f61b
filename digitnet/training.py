"""
training.py
~~~~~~~~~~~

Mini-batch stochastic gradient descent over an IDX dataset stream.

Each epoch visits every row once in a shuffled order. The gradients of
the samples in a mini-batch are summed, divided by the number of samples
actually in that batch (the last batch of an epoch can be shorter than
``batch_size``) and applied to the network in place.
"""

import time
import logging
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence

import numpy as np

from digitnet.benchmark import evaluate
from digitnet.config import TrainConfig
from digitnet.errors import MissingSampleError
from digitnet.functions import shuffle_indexes
from digitnet.mnist_stream import MNISTStream
from digitnet.network import Network
from digitnet.propagation import Gradients, Sample, backward

logger = logging.getLogger(__name__)

EpochCallback = Callable[[Dict[str, Any]], None]


class TrainResult(NamedTuple):
    network: Network
    epochs_loss: List[float]
    execution_time: float


def accumulate_batch(
    network: Network,
    samples: Sequence[Sample],
    activation_function: str
) -> Gradients:
    """
    Sum the per-sample gradients and losses of a mini-batch.

    Returns:
        Gradients: Element-wise sums; divide by len(samples) for the mean
    """
    gradients = Gradients.zeros_like(network)
    for sample in samples:
        gradients.accumulate(backward(network, sample, activation_function))
    return gradients


def update_mini_batch(
    network: Network,
    gradients: Gradients,
    batch_length: int,
    learning_rate: float
) -> None:
    """
    Apply one SGD step in place using the mean of summed gradients.

    Args:
        network: Network to update
        gradients: Gradients summed over the batch
        batch_length: Number of samples the gradients were summed over
        learning_rate: Step size
    """
    step = learning_rate / batch_length
    for layer, dw, db in zip(network.layers, gradients.dws, gradients.dbs):
        layer.weights -= step * dw
        layer.biases -= step * db


def _read_batch(stream: MNISTStream, indexes) -> List[Sample]:
    samples = []
    for r in indexes:
        row = stream.read_at(int(r))
        if row is None:
            raise MissingSampleError(f"No sample was found for row {r}")
        samples.append(Sample(row.pixels, row.label))
    return samples


def train(
    network: Network,
    stream: MNISTStream,
    config: TrainConfig,
    callback: Optional[EpochCallback] = None,
    yield_func: Optional[Callable[[], None]] = None,
    rng: Optional[np.random.Generator] = None,
    test_stream: Optional[MNISTStream] = None
) -> TrainResult:
    """
    Train the network with mini-batch stochastic gradient descent.

    Args:
        network: Network to train, mutated in place
        stream: Open reader over the training set
        config: Hyperparameters and activation function
        callback: Called after each epoch with a progress dictionary
            (epoch, total_epochs, loss, elapsed_time and, when a test
            stream is given, accuracy, correct and total)
        yield_func: Called after each mini-batch so cooperative schedulers
            can run other tasks
        rng: Random generator used to shuffle the rows
        test_stream: Optional open reader evaluated after every epoch

    Returns:
        TrainResult: The network, mean loss per epoch and elapsed seconds

    Raises:
        MissingSampleError: If a row inside the dataset cannot be read
    """
    start_time = time.perf_counter()
    dataset_length = stream.count()
    epochs_loss: List[float] = []

    logger.info(
        f"Training {network}: dataset length {dataset_length}, "
        f"epochs {config.epochs}, batch size {config.batch_size}, "
        f"learning rate {config.learning_rate}, "
        f"activation {config.activation_function}"
    )

    for epoch in range(config.epochs):
        logger.info(f"Starting epoch {epoch + 1} of {config.epochs}")

        rows = shuffle_indexes(dataset_length, rng)
        epoch_loss = 0.0

        for start in range(0, dataset_length, config.batch_size):
            batch = _read_batch(stream, rows[start:start + config.batch_size])
            gradients = accumulate_batch(network, batch, config.activation_function)
            update_mini_batch(network, gradients, len(batch), config.learning_rate)
            epoch_loss += gradients.loss

            if yield_func:
                yield_func()

        mean_loss = epoch_loss / dataset_length if dataset_length else 0.0
        epochs_loss.append(mean_loss)
        logger.info(f"Finished epoch {epoch + 1} with loss: {mean_loss:.4f}")

        if callback:
            progress: Dict[str, Any] = {
                'epoch': epoch + 1,
                'total_epochs': config.epochs,
                'loss': mean_loss,
                'elapsed_time': time.perf_counter() - start_time,
            }
            if test_stream is not None:
                result = evaluate(network, test_stream, config.activation_function)
                progress.update({
                    'accuracy': result.accuracy,
                    'correct': result.success_count,
                    'total': result.samples,
                })
            callback(progress)

    execution_time = time.perf_counter() - start_time
    logger.info(f"Finished training in {execution_time:.2f}s")

    return TrainResult(network, epochs_loss, execution_time)
