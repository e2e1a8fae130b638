"""
End-to-end integrity check of chunked, interrupted object downloads.

One run uploads a random payload under a fresh key, streams it back in
fixed-size chunks while dropping the connection after every chunk, compares
each chunk with the original bytes and deletes the object afterwards.
"""

import asyncio
import logging
import time
from typing import Callable, List, Mapping, Optional

from algorithms.payload import generate_payload, iter_chunk_windows, new_object_key
from common.run_context import RunContext, RunState
from configuration import (
    BYTES_PER_KB,
    DEFAULT_CHUNK_COUNT,
    DEFAULT_CHUNK_SIZE_KB,
    DOWNLOAD_READ_TIMEOUT_SECONDS,
    OBJECT_KEY_PREFIX,
    UPLOAD_READ_TIMEOUT_SECONDS,
    resolve_bucket_name,
    resolve_region,
)
from persistence.record import ChunkReadRecord, summarize_records

logger = logging.getLogger(__name__)


class VerificationSkipped(Exception):
    """The environment does not meet the preconditions of a run (no bucket)."""


class ChunkMismatchError(AssertionError):
    """Downloaded chunk differs from the matching window of the payload."""

    def __init__(self, chunk_index: int, expected_len: int, actual_len: int,
                 first_difference: Optional[int] = None):
        self.chunk_index = chunk_index
        self.expected_len = expected_len
        self.actual_len = actual_len
        self.first_difference = first_difference
        if expected_len != actual_len:
            detail = f"expected {expected_len} bytes, got {actual_len}"
        else:
            detail = f"first difference at byte {first_difference} of the chunk"
        super().__init__(f"Data is not equal for block {chunk_index}: {detail}")


class ObjectLengthMismatchError(AssertionError):
    """Stored object length differs from the payload length."""

    def __init__(self, expected_len: int, actual_len: Optional[int]):
        self.expected_len = expected_len
        self.actual_len = actual_len
        super().__init__(f"Object length is {actual_len} bytes, expected {expected_len}")


def _first_difference(expected: bytes, actual: bytes) -> Optional[int]:
    for offset, (a, b) in enumerate(zip(expected, actual)):
        if a != b:
            return offset
    return None


class VerificationResult:
    """Outcome of one verification run."""

    def __init__(self, context: RunContext, records: List[ChunkReadRecord],
                 disconnects: int = 0):
        self.status = context.state.value
        self.region = context.region
        self.bucket_name = context.bucket_name
        self.object_key = context.object_key
        self.message = context.failure or context.skip_reason
        self.failed_chunk = context.failed_chunk
        self.cleanup_error = context.cleanup_error
        self.cleaned = context.cleaned
        self.records = records
        self.disconnects = disconnects
        self.summary = summarize_records(records)

    @property
    def passed(self) -> bool:
        return self.status == RunState.PASSED.value

    @property
    def failed(self) -> bool:
        return self.status == RunState.FAILED.value

    @property
    def skipped(self) -> bool:
        return self.status == RunState.SKIPPED.value

    def __repr__(self):
        return (
            f"VerificationResult(status={self.status!r}, object_key={self.object_key!r}, "
            f"failed_chunk={self.failed_chunk!r}, message={self.message!r})"
        )


class IntegrityVerifier:
    """Upload, chunked download with injected disconnects, compare and clean up.

    ``storage_factory(bucket_name, region, read_timeout)`` builds a storage
    system; the verifier creates one client with a long read timeout for the
    bucket check, upload and delete, and one with a short read timeout for
    the download so a dropped connection surfaces quickly.
    """

    def __init__(
        self,
        storage_factory: Callable,
        bucket_name: Optional[str] = None,
        region: Optional[str] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE_KB * BYTES_PER_KB,
        chunk_count: int = DEFAULT_CHUNK_COUNT,
        disconnect_between_chunks: bool = True,
        persistence=None,
        payload: Optional[bytes] = None,
        seed: Optional[int] = None,
        key_prefix: str = OBJECT_KEY_PREFIX,
        environ: Optional[Mapping[str, str]] = None,
    ):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if chunk_count <= 0:
            raise ValueError(f"chunk_count must be positive, got {chunk_count}")
        if payload is not None and len(payload) != chunk_size * chunk_count:
            raise ValueError(
                f"Payload is {len(payload)} bytes but {chunk_count} chunks of "
                f"{chunk_size} bytes cover {chunk_size * chunk_count}"
            )

        self.storage_factory = storage_factory
        self.bucket_name = bucket_name
        self.region = region
        self.chunk_size = chunk_size
        self.chunk_count = chunk_count
        self.disconnect_between_chunks = disconnect_between_chunks
        self.persistence = persistence
        self.seed = seed
        self.key_prefix = key_prefix
        self.environ = environ

        self.context = RunContext()
        self.records: List[ChunkReadRecord] = []
        self.disconnects = 0
        self.storage_system = None
        self.download_system = None
        self._payload = payload

    @property
    def payload_size(self) -> int:
        return self.chunk_size * self.chunk_count

    async def run(self) -> VerificationResult:
        """Execute one run and report its outcome without raising for test results."""
        try:
            await self.verify()
        except VerificationSkipped as e:
            logger.warning(f"Verification skipped: {e}")
        except AssertionError as e:
            logger.error(f"Verification failed: {e}")
        except Exception as e:
            logger.error(f"Verification failed: {e}", exc_info=True)
        return VerificationResult(self.context, list(self.records), self.disconnects)

    async def verify(self) -> None:
        """Execute one run, raising VerificationSkipped or the failure cause.

        The uploaded object is deleted on every exit path once a key has been
        assigned.
        """
        ctx = self.context
        ctx.resolve_region(resolve_region(self.region, self.environ))

        bucket_name = resolve_bucket_name(self.bucket_name, self.environ)
        if not bucket_name:
            reason = "You need to specify which S3 bucket to use (S3_BUCKET or BUCKET_NAME)"
            ctx.skip(reason)
            raise VerificationSkipped(reason)
        ctx.bucket_name = bucket_name

        try:
            self.storage_system = self.storage_factory(
                bucket_name, ctx.region, UPLOAD_READ_TIMEOUT_SECONDS
            )
            async with self.storage_system:
                await self._verify_bucket(bucket_name)

                try:
                    payload = self._prepare_payload()
                    ctx.object_key = new_object_key(self.key_prefix)
                    await self._upload(payload)

                    self.download_system = self.storage_factory(
                        bucket_name, ctx.region, DOWNLOAD_READ_TIMEOUT_SECONDS
                    )
                    async with self.download_system:
                        await self._download_and_compare(payload)
                except (Exception, asyncio.CancelledError, KeyboardInterrupt) as e:
                    self._mark_failed(e)
                    raise
                finally:
                    if ctx.needs_cleanup:
                        await self._cleanup()
                    if ctx.state is RunState.CLEANED:
                        ctx.finish()
        except VerificationSkipped:
            raise
        except (Exception, asyncio.CancelledError, KeyboardInterrupt) as e:
            self._mark_failed(e)
            raise

    def _mark_failed(self, error: BaseException) -> None:
        ctx = self.context
        if ctx.failure is not None:
            return
        if isinstance(error, ChunkMismatchError):
            ctx.fail(str(error), error.chunk_index)
        elif ctx.state is RunState.DOWNLOADING:
            ctx.fail(
                f"Reading block {ctx.current_chunk} failed: {type(error).__name__}: {error}",
                ctx.current_chunk,
            )
        else:
            ctx.fail(f"{type(error).__name__}: {error}")

    async def _verify_bucket(self, bucket_name: str) -> None:
        ctx = self.context
        logger.info(f"Verifying that bucket {bucket_name} exists")
        if not await self.storage_system.bucket_exists():
            reason = f"The S3 bucket {bucket_name} must exist"
            ctx.skip(reason)
            raise VerificationSkipped(reason)
        ctx.verify_bucket(bucket_name)
        logger.info(f"Bucket {bucket_name} does exist")

    def _prepare_payload(self) -> bytes:
        if self._payload is None:
            self._payload = generate_payload(self.payload_size, self.seed)
        if len(self._payload) != self.payload_size:
            raise ValueError(
                f"Payload is {len(self._payload)} bytes, chunks cover {self.payload_size}"
            )
        return self._payload

    async def _upload(self, payload: bytes) -> None:
        ctx = self.context
        logger.info(f"Uploading file {ctx.object_key} to bucket {ctx.bucket_name}")
        start_time = time.time()
        await self.storage_system.put_object(ctx.object_key, payload)
        ctx.transition(RunState.UPLOADED)
        logger.info(
            f"File {ctx.object_key} uploaded to bucket {ctx.bucket_name} "
            f"in {time.time() - start_time:.2f} seconds"
        )

    async def _download_and_compare(self, payload: bytes) -> None:
        ctx = self.context
        async with self.download_system.open_stream(ctx.object_key) as stream:
            # A short object fails on the chunk that runs out of data
            if stream.content_length is not None and stream.content_length > len(payload):
                raise ObjectLengthMismatchError(len(payload), stream.content_length)

            for index, start, end in iter_chunk_windows(self.chunk_size, self.chunk_count):
                ctx.begin_chunk(index)
                logger.info(
                    f"Reading block {index} of object {ctx.object_key} from {ctx.bucket_name}"
                )

                reconnects_before = stream.reconnects
                start_ts = time.time()
                data = await self._read_chunk(stream, end - start)
                end_ts = time.time()

                expected = payload[start:end]
                matched = data == expected
                self._store_record(ChunkReadRecord(
                    object_key=ctx.object_key,
                    chunk_index=index,
                    range_start=start,
                    range_len=end - start,
                    bytes_read=len(data),
                    latency_ms=(end_ts - start_ts) * 1000,
                    reconnects=stream.reconnects - reconnects_before,
                    matched=matched,
                    start_ts=start_ts,
                    end_ts=end_ts,
                ))
                logger.info(
                    f"Read block {index} of object {ctx.object_key} from {ctx.bucket_name}"
                )

                if not matched:
                    raise ChunkMismatchError(
                        index, len(expected), len(data), _first_difference(expected, data)
                    )

                if self.disconnect_between_chunks:
                    await self._disrupt(stream)

    async def _read_chunk(self, stream, size: int) -> bytes:
        """Fill a chunk buffer, looping on short reads until full or end of object."""
        buffer = bytearray(size)
        bytes_read = 0
        while bytes_read < size:
            count = await stream.read_into(buffer, bytes_read, size - bytes_read)
            if count == 0:
                break
            bytes_read += count
        return bytes(buffer[:bytes_read])

    async def _disrupt(self, stream) -> None:
        before = self.download_system.get_connection_count()
        await stream.simulate_disconnect()
        self.disconnects += 1
        after = self.download_system.get_connection_count()
        if before >= 0 and after >= 0:
            logger.debug(f"Established connections: {before} -> {after}")

    def _store_record(self, record: ChunkReadRecord) -> None:
        self.records.append(record)
        if self.persistence is not None:
            self.persistence.store_record(record)

    async def _cleanup(self) -> None:
        ctx = self.context
        logger.info(f"Deleting file {ctx.object_key} from {ctx.bucket_name}")
        try:
            await self.storage_system.delete_object(ctx.object_key)
            logger.info(f"File {ctx.object_key} deleted from {ctx.bucket_name}")
        except Exception as e:
            ctx.cleanup_error = f"{type(e).__name__}: {e}"
            logger.error(f"Failed to delete {ctx.object_key} from {ctx.bucket_name}: {e}")
        ctx.mark_cleaned()
