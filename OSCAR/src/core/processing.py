"""Image decoding for uploaded captures."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import cv2
import numpy as np

from OSCAR.src.core.errors import DecodeFailure
from OSCAR.src.core.types import ImageSource

logger = logging.getLogger(__name__)


def decode_image(data: bytes) -> np.ndarray:
    """Decode encoded image bytes into a BGR pixel grid."""
    if not data:
        raise DecodeFailure("image decode failed: empty upload")
    buf = np.frombuffer(data, dtype=np.uint8)
    img = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if img is None or img.size == 0:
        raise DecodeFailure("image decode failed")
    return img


@contextmanager
def decoded_image(source: ImageSource) -> Iterator[np.ndarray]:
    """Decode ``source`` for the duration of a ``with`` block.

    The buffer is freed once the caller's block ends and its ``as`` name goes
    out of scope; nothing else keeps a reference.
    """
    img = decode_image(source.data)
    logger.debug("decoded %s: %dx%d", source.name, img.shape[1], img.shape[0])
    yield img


def read_source(path: Path) -> ImageSource:
    path = Path(path)
    return ImageSource(path.name, path.read_bytes())
