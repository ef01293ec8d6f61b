"""
digitnet package
~~~~~~~~~~~~~~~~

Feed-forward neural network implementation for MNIST digit recognition.
Contains the activation/loss functions, network model, forward and
backward propagation, mini-batch training, the IDX dataset reader,
model persistence, command line tools and the API server.
"""

__version__ = "1.0.0"
