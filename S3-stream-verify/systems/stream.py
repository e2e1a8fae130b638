"""
Resumable streaming reads over a GetObject response body.

A ResumableObjectStream tracks its absolute offset in the object. When the
underlying HTTP response breaks (timeout, payload error, dropped connection
or a body that ends early) the next read reopens the object with a ranged
GetObject from that offset, so callers see a single continuous stream.
"""

import asyncio
import inspect
import logging
from typing import Optional

from aiohttp import ClientError as AIOHTTPClientError
from botocore.exceptions import HTTPClientError, IncompleteReadError, ResponseStreamingError
from urllib3.exceptions import IncompleteRead

from configuration import ERROR_RETRY_DELAY, MAX_RECONNECTS, REQUEST_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

# Failures of the HTTP response that a ranged reopen can recover from
TRANSPORT_ERRORS = (
    AIOHTTPClientError,
    asyncio.TimeoutError,
    HTTPClientError,
    IncompleteReadError,
    ResponseStreamingError,
    IncompleteRead,
    ConnectionError,
)


class StreamInterruptedError(IOError):
    """Raised when a broken stream could not be reopened within the reconnect limit."""

    def __init__(self, key: str, position: int, attempts: int, cause: Optional[BaseException] = None):
        self.key = key
        self.position = position
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Stream for {key} broke at offset {position} and could not be "
            f"resumed after {attempts} attempts: {cause}"
        )


async def _close_body(body) -> None:
    # aiobotocore bodies close synchronously, other bodies may return an awaitable
    result = body.close()
    if inspect.isawaitable(result):
        await result


class ResumableObjectStream:
    """Async read stream over a single object with a fault-injection hook."""

    def __init__(self, storage, key: str, max_reconnects: int = MAX_RECONNECTS,
                 retry_delay: float = ERROR_RETRY_DELAY,
                 read_timeout: float = REQUEST_TIMEOUT_SECONDS):
        self.storage = storage
        self.key = key
        self.max_reconnects = max_reconnects
        self.retry_delay = retry_delay
        self.read_timeout = read_timeout

        self.position: int = 0
        self.content_length: Optional[int] = None
        self.reconnects: int = 0
        self.disconnects: int = 0

        self._body = None
        self._closed = False

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        """Open the object at the current position.

        Errors from the initial GetObject (missing key, auth) propagate.
        """
        response = await self.storage.get_object(self.key, start=self.position)
        self._body = response["Body"]
        if self.content_length is None:
            self.content_length = self.position + int(response["ContentLength"])
        logger.debug(f"Opened {self.key} at offset {self.position}")

    async def _reopen(self, cause: Optional[BaseException]) -> None:
        await self._discard_body()
        attempts = 0
        while True:
            attempts += 1
            if attempts > self.max_reconnects:
                raise StreamInterruptedError(self.key, self.position, attempts - 1, cause)
            logger.info(
                f"Reconnecting to {self.key} at offset {self.position} "
                f"(attempt {attempts}/{self.max_reconnects}, cause: {cause!r})"
            )
            try:
                await self.open()
                self.reconnects += 1
                return
            except TRANSPORT_ERRORS as e:
                cause = e
                await asyncio.sleep(self.retry_delay)

    async def _discard_body(self) -> None:
        body, self._body = self._body, None
        if body is None:
            return
        try:
            await _close_body(body)
        except TRANSPORT_ERRORS as e:
            logger.debug(f"Ignoring error while closing broken body for {self.key}: {e}")

    async def read(self, amt: int) -> bytes:
        """Read up to ``amt`` bytes; returns fewer on a short transport read and b'' at end."""
        if self._closed:
            raise ValueError(f"I/O operation on closed stream for {self.key}")
        if amt <= 0 or self.at_end():
            return b""

        cause = None
        failures = 0
        while True:
            if self._body is None or cause is not None:
                await self._reopen(cause)
                cause = None
            try:
                data = await asyncio.wait_for(self._body.read(amt), timeout=self.read_timeout)
            except TRANSPORT_ERRORS as e:
                cause = e
            else:
                if data:
                    self.position += len(data)
                    return data
                # Body ended before the object did
                cause = ConnectionError(
                    f"premature end of body at offset {self.position} of {self.content_length}"
                )
            failures += 1
            if failures > self.max_reconnects:
                raise StreamInterruptedError(self.key, self.position, failures - 1, cause)

    async def read_into(self, buffer: bytearray, offset: int, length: int) -> int:
        """Read at most ``length`` bytes into ``buffer[offset:]``; returns bytes read this call."""
        data = await self.read(length)
        buffer[offset:offset + len(data)] = data
        return len(data)

    def at_end(self) -> bool:
        return self.content_length is not None and self.position >= self.content_length

    async def simulate_disconnect(self) -> None:
        """Drop the underlying HTTP response as if the network had cut it.

        The broken body is kept so the next read hits the failure and has to
        recover from it.
        """
        if self._body is None:
            return
        self.disconnects += 1
        logger.info(f"Simulating disconnect on {self.key} at offset {self.position}")
        try:
            await _close_body(self._body)
        except TRANSPORT_ERRORS as e:
            logger.debug(f"Error while dropping connection for {self.key}: {e}")

    async def close(self) -> None:
        """Release the response; safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self._discard_body()
