"""
mnist_stream.py
~~~~~~~~~~~~~~~

Random-access reader for MNIST datasets stored in the IDX format.

A dataset split is a pair of files:

- images: ``[magic=0x00000803][count][rows][cols]`` (big-endian uint32)
  followed by ``count * rows * cols`` unsigned bytes, row-major
- labels: ``[magic=0x00000801][count]`` followed by ``count`` bytes

Rows are read on demand by seeking into both files, so the dataset is
never loaded into memory as a whole.
"""

import os
import struct
import logging
from typing import BinaryIO, Callable, Iterator, NamedTuple, Optional, TypeVar

import numpy as np

from digitnet.errors import DatasetFormatError

logger = logging.getLogger(__name__)

T = TypeVar('T')

IMAGE_MAGIC = 0x00000803
LABEL_MAGIC = 0x00000801
IMAGE_HEADER_SIZE = 16
LABEL_HEADER_SIZE = 8

SPLIT_FILES = {
    'train': ('train-images.idx3-ubyte', 'train-labels.idx1-ubyte'),
    'test': ('t10k-images.idx3-ubyte', 't10k-labels.idx1-ubyte'),
}


class MNISTRow(NamedTuple):
    label: int
    pixels: np.ndarray


class MNISTStream:
    """
    Paired image/label file reader with a cursor.

    The reader must be opened before use; prefer the context manager so
    both files are closed on every exit path::

        with MNISTStream.for_split('train', 'data') as mnist:
            row = mnist.read_at(0)

    A single instance is not safe to share between concurrent consumers.
    """

    def __init__(self, images_path: str, labels_path: str):
        self.images_path = images_path
        self.labels_path = labels_path

        self._image_file: Optional[BinaryIO] = None
        self._label_file: Optional[BinaryIO] = None

        self._num_items = 0
        self._rows = 0
        self._cols = 0
        self._index = 0

    @classmethod
    def for_split(cls, mode: str, data_dir: str) -> 'MNISTStream':
        """
        Create a reader for the standard MNIST file names in data_dir.

        Args:
            mode: 'train' or 'test'
            data_dir: Directory holding the IDX files
        """
        if mode not in SPLIT_FILES:
            raise ValueError(f"Unknown dataset split: {mode!r}")
        images_name, labels_name = SPLIT_FILES[mode]
        return cls(
            os.path.join(data_dir, images_name),
            os.path.join(data_dir, labels_name)
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._image_file is not None and self._label_file is not None

    def open(self) -> None:
        """
        Open both files and validate their headers.

        Raises:
            DatasetFormatError: On a bad magic number, a short header or
                when image and label counts disagree
            OSError: If either file cannot be opened
        """
        if self.is_open:
            self.close()

        try:
            self._image_file = open(self.images_path, 'rb')
            self._label_file = open(self.labels_path, 'rb')

            header = self._read_exact(
                self._image_file, 0, IMAGE_HEADER_SIZE, 'image header'
            )
            image_magic, num_items, rows, cols = struct.unpack('>IIII', header)
            if image_magic != IMAGE_MAGIC:
                raise DatasetFormatError(
                    f"Unexpected image magic: {image_magic} "
                    f"(expected {IMAGE_MAGIC} / 0x{IMAGE_MAGIC:08x})"
                )

            header = self._read_exact(
                self._label_file, 0, LABEL_HEADER_SIZE, 'label header'
            )
            label_magic, label_count = struct.unpack('>II', header)
            if label_magic != LABEL_MAGIC:
                raise DatasetFormatError(
                    f"Unexpected label magic: {label_magic} "
                    f"(expected {LABEL_MAGIC} / 0x{LABEL_MAGIC:08x})"
                )

            if label_count != num_items:
                raise DatasetFormatError(
                    f"Image count ({num_items}) != label count ({label_count})"
                )
        except Exception:
            self.close()
            raise

        self._num_items = num_items
        self._rows = rows
        self._cols = cols
        self._index = 0

        logger.debug(
            f"Opened {self.images_path}: {num_items} items of {rows}x{cols}"
        )

    def close(self) -> None:
        """Close both files. Safe to call more than once."""
        image_file, self._image_file = self._image_file, None
        label_file, self._label_file = self._label_file, None
        self._num_items = 0
        self._rows = 0
        self._cols = 0
        self._index = 0
        try:
            if image_file is not None:
                image_file.close()
        finally:
            if label_file is not None:
                label_file.close()

    def __enter__(self) -> 'MNISTStream':
        self.open()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def using(self, callback: Callable[['MNISTStream'], T]) -> T:
        """Open the reader, run callback with it and always close it."""
        with self:
            return callback(self)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def count(self) -> int:
        """
        Number of items in the dataset.

        Raises:
            RuntimeError: If the reader is not open
        """
        self._check_open()
        return self._num_items

    @property
    def rows(self) -> int:
        return self._rows

    @property
    def cols(self) -> int:
        return self._cols

    def reset(self) -> None:
        """Move the cursor back to the first row."""
        self._index = 0

    def read_at(self, index: int) -> Optional[MNISTRow]:
        """
        Read one row by index.

        Args:
            index: Row index

        Returns:
            MNISTRow with pixels scaled to [0, 1], or None if the index is
            out of range

        Raises:
            RuntimeError: If the reader is not open
            DatasetFormatError: If the files are shorter than the header claims
        """
        self._check_open()
        if index < 0 or index >= self._num_items:
            return None

        bytes_per_image = self._rows * self._cols
        raw_pixels = self._read_exact(
            self._image_file,
            IMAGE_HEADER_SIZE + index * bytes_per_image,
            bytes_per_image,
            f'image {index}'
        )
        raw_label = self._read_exact(
            self._label_file, LABEL_HEADER_SIZE + index, 1, f'label {index}'
        )

        pixels = np.frombuffer(raw_pixels, dtype=np.uint8) / 255.0
        return MNISTRow(label=raw_label[0], pixels=pixels)

    def next(self) -> Optional[MNISTRow]:
        """Return the row under the cursor and advance, or None when finished."""
        self._check_open()
        if self._index >= self._num_items:
            return None
        row = self.read_at(self._index)
        self._index += 1
        return row

    def __iter__(self) -> Iterator[MNISTRow]:
        while True:
            row = self.next()
            if row is None:
                return
            yield row

    def __len__(self) -> int:
        return self._num_items

    def _check_open(self) -> None:
        if not self.is_open:
            raise RuntimeError("Call open() first")

    @staticmethod
    def _read_exact(handle: BinaryIO, offset: int, size: int, what: str) -> bytes:
        handle.seek(offset)
        data = handle.read(size)
        if len(data) != size:
            raise DatasetFormatError(
                f"Truncated dataset: expected {size} bytes for {what}, "
                f"got {len(data)}"
            )
        return data


def write_idx(images, labels, images_path: str, labels_path: str) -> None:
    """
    Write images and labels as an IDX dataset pair.

    Args:
        images: uint8-compatible array of shape (count, rows, cols)
        labels: Sequence of count labels
        images_path: Destination of the image file
        labels_path: Destination of the label file
    """
    images = np.asarray(images, dtype=np.uint8)
    labels = np.asarray(labels, dtype=np.uint8)

    if images.ndim != 3:
        raise ValueError(f"Images must have shape (count, rows, cols), got {images.shape}")
    if len(images) != len(labels):
        raise ValueError(
            f"Image count ({len(images)}) != label count ({len(labels)})"
        )

    count, rows, cols = images.shape
    with open(images_path, 'wb') as f:
        f.write(struct.pack('>IIII', IMAGE_MAGIC, count, rows, cols))
        f.write(images.tobytes())
    with open(labels_path, 'wb') as f:
        f.write(struct.pack('>II', LABEL_MAGIC, count))
        f.write(labels.tobytes())

    logger.info(f"Wrote {count} items to {images_path} and {labels_path}")
