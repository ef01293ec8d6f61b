"""
Train and benchmark digit recognition networks from the command line.

Usage:
    digitnet train --epochs 2 --batch-size 64 --learning-rate 0.01
    digitnet benchmark --activation relu
"""

import argparse
import logging
import sys
from typing import List, Optional

from digitnet.benchmark import evaluate
from digitnet.config import (
    DEFAULT_ACTIVATION,
    DEFAULT_MODEL_NAME,
    MODEL_CONFIGS,
    TrainConfig,
    configure_logging,
    get_data_dir,
    get_model_dir,
)
from digitnet.errors import MissingSampleError
from digitnet.mnist_stream import MNISTStream
from digitnet.model_persistence import (
    load_model,
    load_or_create_network,
    model_file_path,
    save_model,
)
from digitnet.training import train

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    minutes = int(seconds // 60)
    return f"{minutes} minutes and {seconds % 60:.2f} seconds"


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--activation', type=str, default=DEFAULT_ACTIVATION,
                        help='Activation function: sigmoid or relu')
    parser.add_argument('--model-dir', type=str, default=None,
                        help='Directory holding model snapshots')
    parser.add_argument('--model-name', type=str, default=DEFAULT_MODEL_NAME,
                        help='Name of the model snapshot')
    parser.add_argument('--data-dir', type=str, default=None,
                        help='Directory holding the MNIST IDX files')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='digitnet',
        description='Feed-forward network for MNIST digit recognition'
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    train_parser = subparsers.add_parser('train', help='Train a model')
    train_parser.add_argument('--epochs', type=int, default=10)
    train_parser.add_argument('--batch-size', type=int, default=10)
    train_parser.add_argument('--learning-rate', type=float, default=0.01)
    _add_common_arguments(train_parser)

    benchmark_parser = subparsers.add_parser(
        'benchmark', help='Evaluate a model on the test set'
    )
    _add_common_arguments(benchmark_parser)

    return parser


def run_train(args: argparse.Namespace) -> int:
    config = TrainConfig(
        learning_rate=args.learning_rate,
        epochs=args.epochs,
        batch_size=args.batch_size,
        activation_function=args.activation,
    )
    model_dir = args.model_dir or get_model_dir()
    data_dir = args.data_dir or get_data_dir()

    network = load_or_create_network(
        MODEL_CONFIGS[config.activation_function],
        config.activation_function,
        model_dir,
        args.model_name
    )

    print("=" * 60)
    print("[Training Model]")
    print("=" * 60)

    with MNISTStream.for_split('train', data_dir) as mnist:
        result = train(network, mnist, config)

    print("\nEpochs Loss:")
    print(f"{'epoch':>6} | {'loss':>8}")
    for epoch, loss in enumerate(result.epochs_loss, start=1):
        print(f"{epoch:>6} | {loss:>8.4f}")

    print(f"\nExecuted in {format_duration(result.execution_time)}")

    path = model_file_path(model_dir, args.model_name, config.activation_function)
    save_model(result.network, path)
    print(f"Model saved to {path}")
    return 0


def run_benchmark(args: argparse.Namespace) -> int:
    model_dir = args.model_dir or get_model_dir()
    data_dir = args.data_dir or get_data_dir()

    path = model_file_path(model_dir, args.model_name, args.activation)
    network = load_model(path)
    if network is None:
        print(f"Error: no trained model at {path}")
        return 1

    with MNISTStream.for_split('test', data_dir) as mnist:
        result = evaluate(network, mnist, args.activation)

    print("\nBenchmark Results:")
    print(f"  Total Samples:          {result.samples}")
    print(f"  Predicted Successfully: {result.success_count}")
    print(f"  Predicted Errorfully:   {result.error_count}")
    print(f"  Accuracy:               {result.accuracy:.4f}")
    print(f"  Error Rate:             {result.error_rate:.4f}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the ``digitnet`` command."""
    configure_logging()
    args = build_parser().parse_args(argv)

    try:
        if args.command == 'train':
            return run_train(args)
        return run_benchmark(args)
    except (MissingSampleError, ValueError) as e:
        # ValueError covers dataset format and activation errors
        logger.error(f"{args.command} failed: {e}")
        return 1
    except FileNotFoundError as e:
        logger.error(f"Dataset file not found: {e.filename}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
