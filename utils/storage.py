# utils/storage.py
# Upload/delete helpers for the S3-compatible bucket that holds student and staff files.

import os
import uuid
import logging
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app

from utils.errors import ActionError

logger = logging.getLogger(__name__)


def _get_s3_client():
    """Builds an S3 client from the app config (endpoint may point at R2 or MinIO)."""
    cfg = current_app.config
    return boto3.client(
        's3',
        endpoint_url=cfg.get('S3_ENDPOINT_URL'),
        aws_access_key_id=cfg.get('S3_ACCESS_KEY_ID'),
        aws_secret_access_key=cfg.get('S3_SECRET_ACCESS_KEY'),
        region_name=cfg.get('S3_REGION', 'auto')
    )


def _file_size(file_storage):
    stream = file_storage.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def build_key(folder, filename):
    ext = filename.rsplit('.', 1)[-1].lower() if filename and '.' in filename else 'bin'
    return f"{folder}/{uuid.uuid4()}.{ext}"


def key_from_url(file_url):
    """A stored URL ends in '<folder>/<name>'; those two segments are the object key."""
    path = urlparse(file_url).path if '://' in file_url else file_url
    parts = [p for p in path.split('/') if p]
    return '/'.join(parts[-2:])


def upload_file(file_storage, folder):
    """
    Stores an uploaded file in the bucket.

    Args:
        file_storage (FileStorage): The uploaded file from the request.
        folder (str): Top-level folder, e.g. "assignments" or "students".

    Returns:
        str: The object key, "<folder>/<uuid>.<ext>".
    """
    if not file_storage or not file_storage.filename:
        raise ActionError("No file provided.")

    max_bytes = current_app.config['MAX_UPLOAD_BYTES']
    if _file_size(file_storage) > max_bytes:
        raise ActionError(f"File size exceeds the limit of {max_bytes // (1024 * 1024)}MB.")

    key = build_key(folder, file_storage.filename)
    bucket = current_app.config['S3_BUCKET_NAME']
    try:
        _get_s3_client().upload_fileobj(
            file_storage.stream,
            bucket,
            key,
            ExtraArgs={'ContentType': file_storage.mimetype or 'application/octet-stream'}
        )
    except (BotoCoreError, ClientError) as e:
        logger.error(f"Error uploading {file_storage.filename} to {bucket}/{key}: {e}")
        raise ActionError(f"Upload failed: {e}")

    logger.info(f"Uploaded {file_storage.filename} to {bucket}/{key}")
    return key


def delete_file(file_url):
    """Removes a stored file. Failures are logged, never raised."""
    if not file_url:
        return False
    key = key_from_url(file_url)
    bucket = current_app.config['S3_BUCKET_NAME']
    try:
        _get_s3_client().delete_object(Bucket=bucket, Key=key)
        logger.info(f"Deleted {bucket}/{key}")
        return True
    except (BotoCoreError, ClientError) as e:
        logger.warning(f"Error deleting {bucket}/{key}: {e}")
        return False


def get_presigned_url(key, expires_in=None):
    expires_in = expires_in or current_app.config['PRESIGNED_URL_EXPIRY']
    try:
        return _get_s3_client().generate_presigned_url(
            'get_object',
            Params={'Bucket': current_app.config['S3_BUCKET_NAME'], 'Key': key},
            ExpiresIn=expires_in
        )
    except (BotoCoreError, ClientError) as e:
        logger.error(f"Error generating presigned URL for {key}: {e}")
        raise ActionError(f"Could not generate download link: {e}")


def get_public_url(key):
    if not key:
        return None
    if '://' in key:
        return key
    base = current_app.config.get('S3_PUBLIC_BASE_URL') or ''
    return f"{base.rstrip('/')}/{key}" if base else key
