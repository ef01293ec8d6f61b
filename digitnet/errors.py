"""
errors.py
~~~~~~~~~

Exceptions raised by the network engine and the dataset reader.
"""


class DatasetFormatError(ValueError):
    """The image/label files are not a valid, consistent IDX dataset."""


class MissingSampleError(RuntimeError):
    """A row inside a known-valid index range could not be read."""


class ActivationFunctionError(ValueError):
    """An unrecognized activation function name was requested."""
