"""
test_functions.py
~~~~~~~~~~~~~~~~~

Unit tests for activation, loss and initialization functions.
"""

import math

import numpy as np
import pytest

from digitnet.errors import ActivationFunctionError
from digitnet.functions import (
    EPSILON,
    cross_entropy,
    get_activation,
    he_init,
    one_hot,
    randn,
    relu,
    relu_prime,
    shuffle_indexes,
    sigmoid,
    sigmoid_prime,
    softmax,
    uniform_init,
)


@pytest.mark.unit
class TestActivations:
    """Test the activation functions and their derivatives."""

    def test_sigmoid_values(self):
        assert sigmoid(0.0) == pytest.approx(0.5)
        assert sigmoid(2.0) == pytest.approx(1 / (1 + math.exp(-2.0)))
        assert sigmoid(np.array([-30.0]))[0] == pytest.approx(0.0)

    def test_sigmoid_prime_takes_activation(self):
        """The derivative is expressed in terms of a = sigmoid(z)."""
        a = sigmoid(0.3)
        assert sigmoid_prime(a) == pytest.approx(a * (1 - a))
        assert sigmoid_prime(0.5) == pytest.approx(0.25)

    def test_relu_and_prime(self):
        z = np.array([-2.0, 0.0, 3.5])
        assert np.array_equal(relu(z), [0.0, 0.0, 3.5])
        assert np.array_equal(relu_prime(relu(z)), [0.0, 0.0, 1.0])
        assert relu_prime(0.7) == 1.0

    def test_get_activation_pairs(self):
        assert get_activation('sigmoid') == (sigmoid, sigmoid_prime)
        assert get_activation('relu') == (relu, relu_prime)

    @pytest.mark.parametrize('name', ['tanh', '', None, 'ReLU'])
    def test_get_activation_rejects_unknown(self, name):
        with pytest.raises(ActivationFunctionError):
            get_activation(name)


@pytest.mark.unit
class TestSoftmaxAndLoss:
    """Test softmax, cross-entropy and one-hot encoding."""

    @pytest.mark.parametrize('logits', [
        [0.0],
        [1.0, 2.0, 3.0],
        [1000.0, 1001.0, -1000.0],
        [-5.0, -5.0, -5.0, -5.0],
    ])
    def test_softmax_is_a_distribution(self, logits):
        p = softmax(np.array(logits))
        assert np.all(p >= 0.0) and np.all(p <= 1.0)
        assert abs(p.sum() - 1.0) < 1e-9

    def test_softmax_is_shift_invariant(self):
        x = np.array([0.1, -0.4, 2.0])
        assert np.allclose(softmax(x), softmax(x + 50.0))

    def test_softmax_random_vectors(self, rng):
        for _ in range(50):
            p = softmax(rng.normal(scale=20.0, size=10))
            assert abs(p.sum() - 1.0) < 1e-9
            assert np.all((p >= 0.0) & (p <= 1.0))

    def test_cross_entropy_zero_for_exact_match(self):
        y = one_hot(4)
        assert cross_entropy(y, y) == 0.0

    def test_cross_entropy_positive_otherwise(self, rng):
        y = one_hot(2)
        for _ in range(20):
            p = softmax(rng.normal(size=10))
            assert cross_entropy(y, p) > 0.0

    def test_cross_entropy_floors_zero_probability(self):
        y = one_hot(0, 2)
        loss = cross_entropy(y, np.array([0.0, 1.0]))
        assert loss == pytest.approx(-math.log(EPSILON))
        assert math.isfinite(loss)

    def test_one_hot(self):
        encoded = one_hot(3)
        assert encoded.shape == (10,)
        assert encoded[3] == 1.0
        assert encoded.sum() == 1.0

    @pytest.mark.parametrize('index', [-1, 10])
    def test_one_hot_out_of_range(self, index):
        with pytest.raises(IndexError):
            one_hot(index)


@pytest.mark.unit
class TestRandomHelpers:
    """Test initialization and shuffling helpers."""

    def test_randn_is_standard_normal(self, rng):
        samples = randn(20000, rng)
        assert np.all(np.isfinite(samples))
        assert abs(samples.mean()) < 0.05
        assert abs(samples.std() - 1.0) < 0.05

    def test_he_init_scale(self, rng):
        weights = he_init(50, (200, 50), rng)
        assert weights.shape == (200, 50)
        assert abs(weights.std() - math.sqrt(2 / 50)) < 0.02

    def test_uniform_init_range(self, rng):
        values = uniform_init((30, 30), rng)
        assert values.min() >= -1.0 and values.max() <= 1.0

    def test_shuffle_indexes_is_permutation(self, rng):
        indexes = shuffle_indexes(100, rng)
        assert sorted(indexes.tolist()) == list(range(100))

    def test_shuffle_indexes_empty(self):
        assert len(shuffle_indexes(0)) == 0
