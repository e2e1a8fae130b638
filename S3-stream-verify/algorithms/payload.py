"""
Payload generation and chunk windows for the integrity check.
"""

import logging
import random
import uuid
from typing import Iterator, Optional, Tuple

logger = logging.getLogger(__name__)


def generate_payload(size: int, seed: Optional[int] = None) -> bytes:
    """Generate ``size`` pseudo-random bytes; not suitable for anything cryptographic."""
    if size < 0:
        raise ValueError(f"Payload size must not be negative, got {size}")
    rng = random.Random(seed)
    payload = rng.randbytes(size)
    logger.info(f"Generated {size} bytes of test data")
    return payload


def chunk_window(index: int, chunk_size: int) -> Tuple[int, int]:
    """Return the [start, end) byte range of chunk ``index``."""
    start = index * chunk_size
    return start, start + chunk_size


def iter_chunk_windows(chunk_size: int, chunk_count: int) -> Iterator[Tuple[int, int, int]]:
    """Yield (index, start, end) for each chunk, in order and without gaps."""
    for index in range(chunk_count):
        start, end = chunk_window(index, chunk_size)
        yield index, start, end


def new_object_key(prefix: str = "") -> str:
    """Generate a fresh object key for one run."""
    return f"{prefix}{uuid.uuid4()}"
