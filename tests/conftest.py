"""
conftest.py
~~~~~~~~~~~

Shared fixtures: tiny IDX datasets written to temporary directories and
small networks with fixed parameters.
"""

import os
import sys

import numpy as np
import pytest

# Allow running the tests without installing the package
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from digitnet.mnist_stream import SPLIT_FILES, write_idx
from digitnet.network import Layer, Network


def write_split(data_dir, mode, images, labels):
    """Write an IDX pair under the standard file names of a split."""
    images_name, labels_name = SPLIT_FILES[mode]
    images_path = os.path.join(str(data_dir), images_name)
    labels_path = os.path.join(str(data_dir), labels_name)
    write_idx(images, labels, images_path, labels_path)
    return images_path, labels_path


@pytest.fixture
def small_idx_files(tmp_path):
    """Two 2x2 images with labels 3 and 7."""
    images = np.array([
        [[255, 0], [128, 64]],
        [[0, 0], [0, 0]],
    ])
    return write_split(tmp_path, 'train', images, [3, 7])


@pytest.fixture
def separable_images():
    """Four 2x2 images: label 0 lights the top row, label 1 the bottom row."""
    images = np.array([
        [[255, 255], [0, 0]],
        [[0, 0], [255, 255]],
        [[230, 255], [10, 0]],
        [[0, 20], [255, 240]],
    ])
    labels = [0, 1, 0, 1]
    return images, labels


@pytest.fixture
def data_dir(tmp_path, separable_images):
    """Directory with train and test splits of the separable dataset."""
    directory = tmp_path / "data"
    directory.mkdir()
    images, labels = separable_images
    write_split(directory, 'train', images, labels)
    write_split(directory, 'test', images, labels)
    return str(directory)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def fixed_network():
    """A 2-2-2 network with hand-picked parameters."""
    return Network([
        Layer([[0.5, -1.0], [1.0, 1.0]], [0.0, -1.0]),
        Layer([[1.0, 2.0], [-1.0, 0.5]], [0.5, 0.0]),
    ])
