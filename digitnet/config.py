"""
config.py
~~~~~~~~~

Training configuration, architecture presets, environment settings and
logging setup.
"""

import os
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List

from digitnet.functions import get_activation

DEFAULT_ACTIVATION = 'relu'
DEFAULT_MODEL_NAME = 'default'

INPUT_SIZE = 28 * 28
OUTPUT_SIZE = 10

# Layer sizes that work well on MNIST for each activation function
MODEL_CONFIGS: Dict[str, List[int]] = {
    'relu': [INPUT_SIZE, 64, 32, OUTPUT_SIZE],
    'sigmoid': [INPUT_SIZE, 16, 16, OUTPUT_SIZE],
}


@dataclass(frozen=True)
class TrainConfig:
    """
    Hyperparameters for a training run.

    Attributes:
        learning_rate: SGD step size, must be positive
        epochs: Number of passes over the dataset, at least 1
        batch_size: Samples per mini-batch, at least 1
        activation_function: 'sigmoid' or 'relu'
    """

    learning_rate: float = 0.01
    epochs: int = 10
    batch_size: int = 10
    activation_function: str = DEFAULT_ACTIVATION

    def __post_init__(self):
        # bool is an int subclass but never a valid count
        if isinstance(self.learning_rate, bool) or \
                not isinstance(self.learning_rate, (int, float)) or \
                self.learning_rate <= 0:
            raise ValueError('learning_rate must be a positive number')
        if isinstance(self.epochs, bool) or \
                not isinstance(self.epochs, int) or self.epochs < 1:
            raise ValueError('epochs must be a positive integer')
        if isinstance(self.batch_size, bool) or \
                not isinstance(self.batch_size, int) or self.batch_size < 1:
            raise ValueError('batch_size must be a positive integer')
        get_activation(self.activation_function)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrainConfig':
        """Build a config from a request body, ignoring unknown keys."""
        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        return cls(**known)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def get_data_dir() -> str:
    """Directory holding the IDX dataset files."""
    return os.getenv('DIGITNET_DATA_DIR', 'data')


def get_model_dir() -> str:
    """Directory for JSON model snapshots and the model database."""
    return os.getenv('DIGITNET_MODEL_DIR', 'models')


def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    is_production = os.getenv('FLASK_ENV') == 'production'

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # In production, silence noisy third-party logs but keep our logs visible
    if is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('digitnet').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)
