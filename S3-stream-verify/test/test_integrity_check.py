"""
Tests for the end-to-end integrity check against an in-memory store.
"""

import asyncio
import os
import sys
import unittest
from unittest.mock import Mock

from aiohttp import ServerDisconnectedError

# Add the parent directory to Python path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fakes import FakeStorageSystem, client_error
from algorithms.integrity_check import (
    ChunkMismatchError,
    IntegrityVerifier,
    VerificationSkipped,
)
from common.run_context import RunState
from configuration import (
    BYTES_PER_KB,
    DOWNLOAD_READ_TIMEOUT_SECONDS,
    UPLOAD_READ_TIMEOUT_SECONDS,
)

CHUNK_SIZE = 512 * BYTES_PER_KB
CHUNK_COUNT = 4
ENV = {'S3_BUCKET': 'test-bucket'}


class TestIntegrityVerifier(unittest.TestCase):
    """Scenarios for skipped, passing and failing runs."""

    def setUp(self):
        self.store = FakeStorageSystem(max_read=64 * BYTES_PER_KB)

    def make_verifier(self, **kwargs):
        params = dict(
            storage_factory=self.store.factory,
            chunk_size=CHUNK_SIZE,
            chunk_count=CHUNK_COUNT,
            environ=ENV,
            seed=1234,
        )
        params.update(kwargs)
        return IntegrityVerifier(**params)

    def run_verifier(self, verifier):
        return asyncio.run(verifier.run())

    def test_skipped_without_bucket_name(self):
        """No bucket configured: skipped before any client is created."""
        factory = Mock()
        verifier = self.make_verifier(storage_factory=factory, environ={})
        result = self.run_verifier(verifier)

        self.assertTrue(result.skipped)
        self.assertIn("S3 bucket", result.message)
        factory.assert_not_called()

    def test_skipped_when_bucket_missing(self):
        """Bucket absent: skipped and no object created."""
        self.store._bucket_exists = False
        result = self.run_verifier(self.make_verifier())

        self.assertTrue(result.skipped)
        self.assertIsNone(result.object_key)
        self.assertEqual(self.store.put_calls, [])
        self.assertEqual(self.store.delete_calls, [])
        self.assertEqual(self.store.objects, {})

    def test_verify_raises_skip(self):
        self.store._bucket_exists = False
        with self.assertRaises(VerificationSkipped):
            asyncio.run(self.make_verifier().verify())

    def test_passes_without_disconnects(self):
        """2 MiB in 4 chunks of 512 KiB with no injected fault."""
        verifier = self.make_verifier(disconnect_between_chunks=False)
        result = self.run_verifier(verifier)

        self.assertTrue(result.passed, result)
        self.assertEqual(len(result.records), CHUNK_COUNT)
        self.assertTrue(all(r.matched for r in result.records))
        self.assertEqual(result.summary['total_bytes'], CHUNK_SIZE * CHUNK_COUNT)
        self.assertEqual(result.summary['reconnects'], 0)
        self.assertEqual(result.disconnects, 0)
        self.assertEqual(self.store.delete_calls, [result.object_key])
        self.assertEqual(self.store.objects, {})

    def test_passes_with_disconnect_after_each_chunk(self):
        """Dropping the connection after every chunk does not corrupt the data."""
        result = self.run_verifier(self.make_verifier())

        self.assertTrue(result.passed, result)
        self.assertEqual(result.disconnects, CHUNK_COUNT)
        self.assertEqual(result.summary['chunks_matched'], CHUNK_COUNT)
        # Every chunk after the first starts on a fresh ranged request
        starts = [start for _, start in self.store.get_calls]
        self.assertEqual(starts, [i * CHUNK_SIZE for i in range(CHUNK_COUNT)])
        self.assertEqual(result.summary['reconnects'], CHUNK_COUNT - 1)
        self.assertEqual(self.store.objects, {})

    def test_downloaded_chunks_reproduce_payload(self):
        payload = bytes(range(256)) * (CHUNK_SIZE * CHUNK_COUNT // 256)
        verifier = self.make_verifier(payload=payload)
        result = self.run_verifier(verifier)

        self.assertTrue(result.passed, result)
        windows = [(r.range_start, r.range_start + r.range_len) for r in result.records]
        self.assertEqual(windows[0][0], 0)
        self.assertEqual(windows[-1][1], len(payload))
        for (_, end), (start, _) in zip(windows, windows[1:]):
            self.assertEqual(end, start)

    def test_corrupted_chunk_fails_and_names_index(self):
        """One corrupted chunk fails the run; the object is still deleted."""
        self.store.corrupt_offsets = {2 * CHUNK_SIZE + 10}
        result = self.run_verifier(self.make_verifier())

        self.assertTrue(result.failed)
        self.assertEqual(result.failed_chunk, 2)
        self.assertIn("block 2", result.message)
        self.assertIn("byte 10", result.message)
        self.assertEqual([r.matched for r in result.records], [True, True, False])
        self.assertTrue(result.cleaned)
        self.assertEqual(self.store.delete_calls, [result.object_key])
        self.assertEqual(self.store.objects, {})

    def test_verify_raises_chunk_mismatch(self):
        self.store.corrupt_offsets = {0}
        verifier = self.make_verifier()
        with self.assertRaises(ChunkMismatchError) as ctx:
            asyncio.run(verifier.verify())
        self.assertEqual(ctx.exception.chunk_index, 0)
        self.assertEqual(verifier.context.state, RunState.FAILED)
        self.assertEqual(self.store.objects, {})

    def test_short_object_fails_on_last_chunk(self):
        """An object missing trailing bytes fails the chunk that runs out of data."""
        original_put = self.store.put_object

        async def short_put(key, data):
            await original_put(key, data[:-10])

        self.store.put_object = short_put
        result = self.run_verifier(self.make_verifier())

        self.assertTrue(result.failed)
        self.assertEqual(result.failed_chunk, CHUNK_COUNT - 1)
        self.assertIn(f"block {CHUNK_COUNT - 1}", result.message)
        self.assertIn(f"got {CHUNK_SIZE - 10}", result.message)
        self.assertEqual(len(result.records), CHUNK_COUNT)
        self.assertFalse(result.records[-1].matched)
        self.assertEqual(self.store.objects, {})

    def test_long_object_fails_before_reading(self):
        original_put = self.store.put_object

        async def long_put(key, data):
            await original_put(key, data + b"extra")

        self.store.put_object = long_put
        result = self.run_verifier(self.make_verifier())

        self.assertTrue(result.failed)
        self.assertIn("Object length", result.message)
        self.assertEqual(result.records, [])
        self.assertEqual(self.store.objects, {})

    def test_upload_failure_fails_and_still_cleans_up(self):
        self.store.put_error = client_error('AccessDenied', 403, 'PutObject')
        result = self.run_verifier(self.make_verifier())

        self.assertTrue(result.failed)
        self.assertIn("AccessDenied", result.message)
        self.assertEqual(self.store.get_calls, [])
        self.assertEqual(self.store.delete_calls, [result.object_key])

    def test_broken_stream_fails_with_chunk_index(self):
        """A stream that cannot be resumed fails the chunk being read."""
        chunk_size = 64 * BYTES_PER_KB
        self.store.truncate_responses = [chunk_size + 100] + [0] * 10
        verifier = self.make_verifier(chunk_size=chunk_size, disconnect_between_chunks=False)
        result = self.run_verifier(verifier)

        self.assertTrue(result.failed)
        self.assertEqual(result.failed_chunk, 1)
        self.assertIn("StreamInterruptedError", result.message)
        self.assertEqual(self.store.objects, {})

    def test_cleanup_failure_does_not_mask_result(self):
        self.store.delete_error = client_error('InternalError', 500, 'DeleteObject')
        result = self.run_verifier(self.make_verifier())

        self.assertTrue(result.passed)
        self.assertIn("InternalError", result.cleanup_error)

    def test_cleanup_transport_error_does_not_mask_result(self):
        """A dropped connection during delete is recorded without failing a passing run."""
        self.store.delete_error = ServerDisconnectedError()
        result = self.run_verifier(self.make_verifier())

        self.assertTrue(result.passed, result)
        self.assertIsNone(result.failed_chunk)
        self.assertIn("ServerDisconnectedError", result.cleanup_error)
        self.assertTrue(result.cleaned)
        self.assertEqual(self.store.delete_calls, [result.object_key])

    def test_cleanup_failure_keeps_original_failure(self):
        self.store.corrupt_offsets = {CHUNK_SIZE}
        self.store.delete_error = client_error('InternalError', 500, 'DeleteObject')
        result = self.run_verifier(self.make_verifier())

        self.assertTrue(result.failed)
        self.assertEqual(result.failed_chunk, 1)
        self.assertIsNotNone(result.cleanup_error)

    def test_uses_short_timeout_for_download(self):
        self.run_verifier(self.make_verifier())
        self.assertEqual(
            self.store.read_timeouts,
            [UPLOAD_READ_TIMEOUT_SECONDS, DOWNLOAD_READ_TIMEOUT_SECONDS],
        )
        self.assertEqual(self.store.entered, self.store.exited)

    def test_small_partial_reads(self):
        self.store.max_read = 777
        result = self.run_verifier(self.make_verifier(chunk_size=8 * BYTES_PER_KB))
        self.assertTrue(result.passed, result)

    def test_records_are_persisted(self):
        persistence = Mock()
        self.run_verifier(self.make_verifier(persistence=persistence))
        self.assertEqual(persistence.store_record.call_count, CHUNK_COUNT)

    def test_region_defaults(self):
        result = self.run_verifier(self.make_verifier())
        self.assertEqual(result.region, 'us-east-1')
        self.assertEqual(result.bucket_name, 'test-bucket')

    def test_factory_error_fails_run(self):
        def broken_factory(bucket_name, region, read_timeout):
            raise ValueError("R2_ENDPOINT must be set to use R2 storage")

        result = self.run_verifier(self.make_verifier(storage_factory=broken_factory))
        self.assertTrue(result.failed)
        self.assertIn("R2_ENDPOINT", result.message)

    def test_unique_keys_per_run(self):
        first = self.run_verifier(self.make_verifier())
        second = self.run_verifier(self.make_verifier())
        self.assertNotEqual(first.object_key, second.object_key)


class TestVerifierSetup(unittest.TestCase):
    """Harness setup errors are caught before anything is uploaded."""

    def test_payload_size_must_match_chunks(self):
        store = FakeStorageSystem()
        with self.assertRaises(ValueError):
            IntegrityVerifier(store.factory, chunk_size=1024, chunk_count=4,
                              payload=b"x" * 4000, environ=ENV)
        self.assertEqual(store.put_calls, [])

    def test_chunk_parameters_must_be_positive(self):
        with self.assertRaises(ValueError):
            IntegrityVerifier(Mock(), chunk_size=0, chunk_count=4)
        with self.assertRaises(ValueError):
            IntegrityVerifier(Mock(), chunk_size=1024, chunk_count=0)


if __name__ == '__main__':
    unittest.main()
