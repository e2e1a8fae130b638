"""
Basic data structures for verification results.
"""

import time
from typing import Iterable


class ChunkReadRecord:
    """Data structure for one chunk read during verification."""

    def __init__(self, object_key, chunk_index, range_start, range_len,
                 bytes_read, latency_ms, reconnects, matched,
                 start_ts: float = None, end_ts: float = None):
        self.object_key = object_key
        self.chunk_index = chunk_index
        self.range_start = range_start
        self.range_len = range_len
        self.bytes = bytes_read
        self.latency_ms = latency_ms
        self.reconnects = reconnects
        self.matched = matched
        self.start_ts = start_ts or time.time()
        self.end_ts = end_ts or time.time()

    def to_dict(self) -> dict:
        return {
            'object_key': self.object_key,
            'chunk_index': self.chunk_index,
            'range_start': self.range_start,
            'range_len': self.range_len,
            'bytes': self.bytes,
            'latency_ms': self.latency_ms,
            'reconnects': self.reconnects,
            'matched': self.matched,
            'start_ts': self.start_ts,
            'end_ts': self.end_ts,
        }


def summarize_records(records: Iterable[ChunkReadRecord]) -> dict:
    """Get basic summary statistics over chunk reads."""
    records = list(records)
    if not records:
        return {}

    total_latency = sum(r.latency_ms for r in records)
    return {
        'chunks_read': len(records),
        'chunks_matched': sum(1 for r in records if r.matched),
        'mismatches': sum(1 for r in records if not r.matched),
        'total_bytes': sum(r.bytes for r in records),
        'reconnects': sum(r.reconnects for r in records),
        'avg_latency_ms': total_latency / len(records),
    }
