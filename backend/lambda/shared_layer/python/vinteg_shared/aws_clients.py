"""vinteg_shared.aws_clients — Lazy-singleton AWS service clients.

Creates the boto3 client on first call and caches it for subsequent warm
invocations, so cold starts that never touch S3 skip client construction.
"""

from __future__ import annotations

from typing import Optional

import boto3
from botocore.config import Config

from vinteg_shared.config import AWS_REGION

__all__ = ["_get_s3"]

_s3 = None


def _get_s3(region: Optional[str] = None):
    """Get (or create) the S3 client singleton."""
    global _s3
    if _s3 is None:
        _s3 = boto3.client(
            "s3",
            region_name=region or AWS_REGION,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )
    return _s3
