"""
AWS S3 object storage system implementation.
"""

import logging

from configuration import S3_ENDPOINT, UPLOAD_READ_TIMEOUT_SECONDS
from systems.base import ObjectStorageSystem

logger = logging.getLogger(__name__)


class AWSSystem(ObjectStorageSystem):
    """AWS S3 object storage system."""

    def __init__(self, bucket_name: str, credentials: dict = None,
                 read_timeout: float = UPLOAD_READ_TIMEOUT_SECONDS):
        if credentials is None:
            credentials = {}

        super().__init__(
            endpoint=S3_ENDPOINT,
            bucket_name=bucket_name,
            credentials=credentials,
            read_timeout=read_timeout,
        )
        logger.info(f"Initialized AWS S3 system in {credentials.get('region_name') or 'default region'}")
