"""Test suite for payload generation and chunk windows."""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from algorithms.payload import chunk_window, generate_payload, iter_chunk_windows, new_object_key
from configuration import BYTES_PER_KB, DEFAULT_CHUNK_COUNT, DEFAULT_CHUNK_SIZE_KB, BYTES_PER_MB


class TestPayload:
    """Test cases for payload generation."""

    def test_default_payload_is_two_mib(self):
        size = DEFAULT_CHUNK_SIZE_KB * BYTES_PER_KB * DEFAULT_CHUNK_COUNT
        assert size == 2 * BYTES_PER_MB
        assert len(generate_payload(size)) == size

    def test_seeded_payload_is_reproducible(self):
        assert generate_payload(4096, seed=7) == generate_payload(4096, seed=7)
        assert generate_payload(4096, seed=7) != generate_payload(4096, seed=8)

    def test_empty_payload(self):
        assert generate_payload(0) == b""

    def test_negative_size(self):
        with pytest.raises(ValueError):
            generate_payload(-1)


class TestChunkWindows:
    """Test cases for chunk window arithmetic."""

    def test_chunk_window(self):
        assert chunk_window(0, 512) == (0, 512)
        assert chunk_window(3, 512) == (1536, 2048)

    def test_windows_cover_payload_without_gaps(self):
        windows = list(iter_chunk_windows(512 * BYTES_PER_KB, 4))
        assert [index for index, _, _ in windows] == [0, 1, 2, 3]
        assert windows[0][1] == 0
        assert windows[-1][2] == 2 * BYTES_PER_MB
        for (_, _, end), (_, start, _) in zip(windows, windows[1:]):
            assert end == start

    def test_windows_reassemble_payload(self):
        payload = generate_payload(4000, seed=1)
        parts = [payload[start:end] for _, start, end in iter_chunk_windows(1000, 4)]
        assert b"".join(parts) == payload


def test_object_keys_are_unique():
    keys = {new_object_key() for _ in range(100)}
    assert len(keys) == 100


def test_object_key_prefix():
    assert new_object_key("stream-verify/").startswith("stream-verify/")
