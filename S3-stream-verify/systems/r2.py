"""
Cloudflare R2 object storage system implementation.
"""

import logging

from configuration import R2_ENDPOINT, UPLOAD_READ_TIMEOUT_SECONDS
from systems.base import ObjectStorageSystem

logger = logging.getLogger(__name__)


class R2System(ObjectStorageSystem):
    """Cloudflare R2 object storage system."""

    def __init__(self, bucket_name: str, credentials: dict = None,
                 read_timeout: float = UPLOAD_READ_TIMEOUT_SECONDS):
        if credentials is None:
            credentials = {}

        if not R2_ENDPOINT:
            raise ValueError("R2_ENDPOINT must be set to use R2 storage")

        super().__init__(
            endpoint=R2_ENDPOINT,
            bucket_name=bucket_name,
            credentials=credentials,
            read_timeout=read_timeout,
        )
        logger.info("Initialized R2 system")
