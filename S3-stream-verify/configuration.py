"""
Configuration constants for the S3 stream verification harness.

This module contains all configuration parameters including:
- Cloud credentials and endpoints
- Region and bucket resolution from the environment
- Verification parameters (chunk size, chunk count)
- Client timeouts and reconnect limits
"""

import os
from typing import Mapping, Optional

# =============================================================================
# CLOUD STORAGE CONFIGURATION
# =============================================================================

# Bucket name: primary variable and its fallback
BUCKET_ENV_VAR: str = "S3_BUCKET"
BUCKET_FALLBACK_ENV_VAR: str = "BUCKET_NAME"

# Region: primary variable, fallback and default
REGION_ENV_VAR: str = "AWS_REGION"
REGION_FALLBACK_ENV_VAR: str = "AWS_DEFAULT_REGION"
DEFAULT_REGION: str = "us-east-1"

# AWS S3 credentials and configuration (empty means SDK default chain)
S3_ENDPOINT: str = os.getenv("S3_ENDPOINT", "")
AWS_ACCESS_KEY_ID: str = os.getenv("AWS_ACCESS_KEY_ID", "")
AWS_SECRET_ACCESS_KEY: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")

# Cloudflare R2 credentials and configuration
R2_ENDPOINT: str = os.getenv("R2_ENDPOINT", "")
R2_ACCESS_KEY_ID: str = os.getenv("R2_ACCESS_KEY_ID", "")
R2_SECRET_ACCESS_KEY: str = os.getenv("R2_SECRET_ACCESS_KEY", "")
R2_REGION: str = "auto"

# =============================================================================
# FILE SIZE CONSTANTS
# =============================================================================

BYTES_PER_KB: int = 1024
BYTES_PER_MB: int = 1024 * 1024

# =============================================================================
# VERIFICATION PARAMETERS
# =============================================================================

# 4 chunks of 512 KiB = 2 MiB payload
DEFAULT_CHUNK_SIZE_KB: int = 512
DEFAULT_CHUNK_COUNT: int = 4

# Object metadata
CONTENT_TYPE: str = "application/octet-stream"
OBJECT_KEY_PREFIX: str = os.getenv("OBJECT_KEY_PREFIX", "")

# =============================================================================
# ERROR HANDLING AND TIMEOUTS
# =============================================================================

CONNECT_TIMEOUT_SECONDS: int = 5
UPLOAD_READ_TIMEOUT_SECONDS: int = 10  # Bucket check, upload and delete
DOWNLOAD_READ_TIMEOUT_SECONDS: int = 1  # Short, so a broken stream fails fast
REQUEST_TIMEOUT_SECONDS: int = 30  # Upper bound for a single read call
SDK_MAX_ATTEMPTS: int = 3  # botocore retry attempts per request

MAX_RECONNECTS: int = 3  # Consecutive reopen attempts for a broken stream
ERROR_RETRY_DELAY: float = 0.5  # Delay between reopen attempts in seconds

# =============================================================================
# CLI DEFAULTS
# =============================================================================

DEFAULT_OUTPUT_DIR: str = "results"
DEFAULT_STORAGE_TYPE: str = "s3"

# Exit codes
EXIT_PASSED: int = 0
EXIT_FAILED: int = 1
EXIT_SKIPPED: int = 2


def _first_non_empty(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value:
            return value
    return None


def resolve_region(explicit: Optional[str] = None,
                   environ: Optional[Mapping[str, str]] = None) -> str:
    """Resolve the region: explicit value, AWS_REGION, AWS_DEFAULT_REGION, then us-east-1."""
    if environ is None:
        environ = os.environ
    return _first_non_empty(
        explicit,
        environ.get(REGION_ENV_VAR),
        environ.get(REGION_FALLBACK_ENV_VAR),
    ) or DEFAULT_REGION


def resolve_bucket_name(explicit: Optional[str] = None,
                        environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Resolve the bucket name: explicit value, S3_BUCKET, then BUCKET_NAME.

    Returns None when nothing usable is configured; callers treat that as a
    reason to skip the run rather than fail it.
    """
    if environ is None:
        environ = os.environ
    return _first_non_empty(
        explicit,
        environ.get(BUCKET_ENV_VAR),
        environ.get(BUCKET_FALLBACK_ENV_VAR),
    )
