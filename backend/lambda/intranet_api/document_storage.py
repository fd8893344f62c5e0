"""document_storage.py — Where uploaded document content lives.

Without DOCUMENTS_S3_BUCKET the base64 payload is stored inline in the
documents row and storage_path is the marker "db-storage". With a bucket
configured the payload goes to S3 under DOCUMENTS_S3_PREFIX and the object
key becomes the storage_path; the row's data column stays NULL.
"""
from __future__ import annotations

import logging
import re
import uuid
from typing import Any, Dict, Optional, Tuple

from botocore.exceptions import ClientError

from vinteg_shared.aws_clients import _get_s3
from vinteg_shared.config import DOCUMENTS_S3_BUCKET, DOCUMENTS_S3_PREFIX

logger = logging.getLogger(__name__)

INLINE_STORAGE = "db-storage"
_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _object_key(filename: str) -> str:
    safe_name = _UNSAFE_KEY_CHARS.sub("_", filename).strip("_") or "document"
    return f"{DOCUMENTS_S3_PREFIX}/{uuid.uuid4()}/{safe_name}"


def _store_content(filename: str, data: str, mime_type: Optional[str] = None) -> Tuple[str, Optional[str]]:
    """Persist the payload; returns (storage_path, inline data or None)."""
    if not DOCUMENTS_S3_BUCKET:
        return INLINE_STORAGE, data
    key = _object_key(filename)
    _get_s3().put_object(
        Bucket=DOCUMENTS_S3_BUCKET,
        Key=key,
        Body=data.encode("utf-8"),
        ContentType="text/plain; charset=utf-8",
        Metadata={"original-mime-type": mime_type or "application/octet-stream"},
    )
    logger.info("[INFO] Stored document content at s3://%s/%s", DOCUMENTS_S3_BUCKET, key)
    return key, None


def _load_content(document: Dict[str, Any]) -> Dict[str, Any]:
    """Fill document["data"] from S3 when the row points at an object."""
    storage_path = document.get("storage_path")
    if not storage_path or storage_path == INLINE_STORAGE or document.get("data"):
        return document
    if not DOCUMENTS_S3_BUCKET:
        logger.warning("[WARNING] Document %s is in S3 but DOCUMENTS_S3_BUCKET is unset", document.get("id"))
        return document
    obj = _get_s3().get_object(Bucket=DOCUMENTS_S3_BUCKET, Key=storage_path)
    hydrated = dict(document)
    hydrated["data"] = obj["Body"].read().decode("utf-8")
    return hydrated


def _delete_content(storage_path: Optional[str]) -> None:
    if not storage_path or storage_path == INLINE_STORAGE or not DOCUMENTS_S3_BUCKET:
        return
    try:
        _get_s3().delete_object(Bucket=DOCUMENTS_S3_BUCKET, Key=storage_path)
    except ClientError as exc:
        # The row is already gone; an orphaned object is logged, not surfaced.
        logger.error("[ERROR] Failed to delete s3://%s/%s: %s", DOCUMENTS_S3_BUCKET, storage_path, exc)
