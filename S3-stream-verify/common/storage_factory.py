"""
Factory module for creating storage system instances.
"""

import logging

# Suppress boto3/botocore logging BEFORE importing any boto3-related modules
logging.getLogger('botocore').setLevel(logging.CRITICAL)
logging.getLogger('botocore.credentials').setLevel(logging.CRITICAL)
logging.getLogger('boto3').setLevel(logging.CRITICAL)
logging.getLogger('aioboto3').setLevel(logging.CRITICAL)
logging.getLogger('aiobotocore').setLevel(logging.CRITICAL)
logging.getLogger('urllib3').setLevel(logging.CRITICAL)

from systems.r2 import R2System
from systems.aws import AWSSystem
from configuration import (
    R2_ACCESS_KEY_ID,
    R2_SECRET_ACCESS_KEY,
    R2_REGION,
    AWS_ACCESS_KEY_ID,
    AWS_SECRET_ACCESS_KEY,
    UPLOAD_READ_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


def create_storage_system(storage_type: str, bucket_name: str, region: str,
                          read_timeout: float = UPLOAD_READ_TIMEOUT_SECONDS):
    """Create and return the appropriate storage system based on type.

    Args:
        storage_type: Storage type ('r2' or 's3')
        bucket_name: Bucket the harness writes to
        region: Region for S3; R2 always uses 'auto'
        read_timeout: Socket read timeout of the client in seconds

    Returns:
        Storage system instance (R2System or AWSSystem)

    Raises:
        ValueError: If storage_type is not supported
    """
    storage_type = storage_type.lower()

    if storage_type == "r2":
        credentials = {
            "access_key_id": R2_ACCESS_KEY_ID,
            "secret_access_key": R2_SECRET_ACCESS_KEY,
            "region_name": R2_REGION,
        }
        return R2System(bucket_name, credentials, read_timeout=read_timeout)

    elif storage_type == "s3":
        credentials = {
            "access_key_id": AWS_ACCESS_KEY_ID,
            "secret_access_key": AWS_SECRET_ACCESS_KEY,
            "region_name": region,
        }
        return AWSSystem(bucket_name, credentials, read_timeout=read_timeout)

    else:
        raise ValueError(f"Unsupported storage type: {storage_type}. Must be 'r2' or 's3'.")
