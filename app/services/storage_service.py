# app/services/storage_service.py
"""
Evidence photos live in a private Cloudflare R2 bucket (S3-compatible).
Appointments keep the public URL of the stored object.
"""
import logging
import mimetypes
import uuid
from pathlib import Path

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.core import config
from app.core.exceptions import StorageError

logger = logging.getLogger(__name__)

ALLOWED_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp", ".heic"}


def get_r2_client():
    """Create and return an R2 client."""
    return boto3.client(
        "s3",
        endpoint_url=f"https://{config.R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
        aws_access_key_id=config.R2_ACCESS_KEY_ID,
        aws_secret_access_key=config.R2_SECRET_ACCESS_KEY,
        config=Config(signature_version="s3v4"),
        region_name="auto",
    )


def evidence_key(filename: str, folder: str = "no-show-evidence") -> str:
    suffix = Path(filename or "").suffix.lower()
    if suffix not in ALLOWED_SUFFIXES:
        suffix = ".jpg"
    return f"{folder}/{uuid.uuid4().hex}{suffix}"


def public_url(key: str) -> str:
    if config.R2_PUBLIC_URL:
        return f"{config.R2_PUBLIC_URL.rstrip('/')}/{key}"
    return f"https://{config.R2_ACCOUNT_ID}.r2.cloudflarestorage.com/{config.R2_BUCKET_NAME}/{key}"


def save_evidence_photo(content: bytes, filename: str, folder: str = "no-show-evidence") -> str:
    """Upload the photo and return its object key."""
    key = evidence_key(filename, folder)
    content_type = mimetypes.guess_type(key)[0] or "image/jpeg"
    try:
        get_r2_client().put_object(
            Bucket=config.R2_BUCKET_NAME,
            Key=key,
            Body=content,
            ContentType=content_type,
        )
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Failed to upload evidence photo {key}: {e}")
        raise StorageError("evidence_upload_failed", "Failed to upload evidence photo") from e
    logger.info(f"Uploaded evidence photo {key} ({len(content)} bytes)")
    return key


def delete_evidence_photo(key: str) -> bool:
    try:
        get_r2_client().delete_object(Bucket=config.R2_BUCKET_NAME, Key=key)
        return True
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Failed to delete evidence photo {key}: {e}")
        return False
