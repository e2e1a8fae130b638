"""
Async base class for object storage systems used by the verification harness.
"""

import logging
import os
from typing import Any, Dict, Optional

import aioboto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from configuration import (
    CONNECT_TIMEOUT_SECONDS,
    CONTENT_TYPE,
    SDK_MAX_ATTEMPTS,
    UPLOAD_READ_TIMEOUT_SECONDS,
)
from systems.stream import ResumableObjectStream

logger = logging.getLogger(__name__)

# Try to import psutil for connection monitoring (optional)
try:
    import psutil
    HAS_PSUTIL = True
except ImportError:
    HAS_PSUTIL = False
    logger.warning("psutil not available - connection monitoring will be limited")


class ObjectStorageSystem:
    """Async base class for S3-compatible object storage systems."""

    def __init__(self, endpoint: str, bucket_name: str, credentials: dict,
                 read_timeout: float = UPLOAD_READ_TIMEOUT_SECONDS):
        self.endpoint = endpoint or None
        self.bucket_name = bucket_name
        self.credentials = credentials
        self.read_timeout = read_timeout

        self._config = self._create_config()

        # Empty credentials fall through to the SDK default provider chain
        self.session = aioboto3.Session(
            aws_access_key_id=credentials.get("access_key_id") or None,
            aws_secret_access_key=credentials.get("secret_access_key") or None,
            region_name=credentials.get("region_name") or None,
        )

        self.client = None

        logger.info(
            f"Initialized storage for {self.endpoint or 'default endpoint'} "
            f"(bucket={bucket_name}, read_timeout={read_timeout}s)"
        )

    def _create_config(self) -> Config:
        """Create the botocore config for this client."""
        return Config(
            connect_timeout=CONNECT_TIMEOUT_SECONDS,
            read_timeout=self.read_timeout,
            retries={
                'max_attempts': SDK_MAX_ATTEMPTS,
                'mode': 'standard',
            },
            tcp_keepalive=True,
        )

    async def __aenter__(self):
        """Async context manager entry."""
        self.client = await self.session.client(
            "s3",
            endpoint_url=self.endpoint,
            config=self._config,
        ).__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.client:
            await self.client.__aexit__(exc_type, exc_val, exc_tb)
            self.client = None

    def _require_client(self):
        if not self.client:
            raise RuntimeError("Storage client not initialized. Use async context manager.")
        return self.client

    def get_connection_count(self) -> int:
        """Get number of established connections for this process."""
        if not HAS_PSUTIL:
            return -1

        try:
            process = psutil.Process(os.getpid())
            connections = process.net_connections(kind='inet')
            established = [c for c in connections if c.status == psutil.CONN_ESTABLISHED]
            return len(established)
        except (psutil.Error, OSError) as e:
            logger.debug(f"Failed to get connection count: {e}")
            return -1

    async def bucket_exists(self) -> bool:
        """Check that the bucket exists and is reachable with these credentials."""
        client = self._require_client()
        try:
            await client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            status_code = e.response.get('ResponseMetadata', {}).get('HTTPStatusCode', 0)
            logger.warning(
                f"Bucket {self.bucket_name} not available: {error_code} (HTTP {status_code})"
            )
            return False
        except BotoCoreError as e:
            logger.warning(f"Bucket {self.bucket_name} not reachable: {e}")
            return False

    async def put_object(self, key: str, data: bytes) -> None:
        """Upload the whole object in a single request.

        Raises:
            botocore.exceptions.ClientError: on auth or service errors
            botocore.exceptions.BotoCoreError: on transport errors
        """
        client = self._require_client()
        await client.put_object(
            Bucket=self.bucket_name,
            Key=key,
            Body=data,
            ContentLength=len(data),
            ContentType=CONTENT_TYPE,
        )

    async def get_object(self, key: str, start: int = 0) -> Dict[str, Any]:
        """Issue a GetObject, optionally from a byte offset to the end of the object."""
        client = self._require_client()
        params = {'Bucket': self.bucket_name, 'Key': key}
        if start > 0:
            params['Range'] = f"bytes={start}-"
        return await client.get_object(**params)

    def open_stream(self, key: str) -> ResumableObjectStream:
        """Create a resumable read stream over the object; use with ``async with``."""
        return ResumableObjectStream(self, key)

    async def delete_object(self, key: str) -> None:
        """Delete the object. Deleting a missing key succeeds on S3."""
        client = self._require_client()
        await client.delete_object(Bucket=self.bucket_name, Key=key)

    async def head_object(self, key: str) -> Optional[Dict[str, Any]]:
        """Return object metadata, or None when the key does not exist."""
        client = self._require_client()
        try:
            return await client.head_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            status_code = e.response.get('ResponseMetadata', {}).get('HTTPStatusCode', 0)
            if status_code == 404:
                return None
            raise
