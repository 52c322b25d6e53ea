"""GCS access for captured frames and mirrored analysis results."""

import os

DEFAULT_BUCKET = "engagecast-frames"


def get_bucket_name() -> str:
    """Bucket name from env or default."""
    return os.environ.get("GCS_BUCKET", "").strip() or DEFAULT_BUCKET


def _bucket(bucket_name: str | None):
    from google.cloud import storage

    client = storage.Client()
    return client.bucket(bucket_name or get_bucket_name())


def upload_blob(
    blob_name: str,
    data: bytes,
    *,
    bucket_name: str | None = None,
    content_type: str = "image/jpeg",
) -> None:
    """
    Upload raw bytes to a GCS object (e.g. a captured frame).

    :param blob_name: Object path in bucket, e.g. "frames/m1/alice%40x%2Ecom/1700000000000.jpg"
    :param data: Raw bytes to upload
    :param bucket_name: GCS bucket; default from GCS_BUCKET env or "engagecast-frames"
    :param content_type: MIME type recorded on the object
    """
    blob = _bucket(bucket_name).blob(blob_name)
    blob.upload_from_string(data, content_type=content_type)


def download_blob(blob_name: str, *, bucket_name: str | None = None) -> bytes:
    """Download a GCS object's bytes. Raises google NotFound if it is gone."""
    blob = _bucket(bucket_name).blob(blob_name)
    return blob.download_as_bytes()


def delete_blob(blob_name: str, *, bucket_name: str | None = None) -> None:
    """Delete a GCS object. Raises google NotFound if it is already gone."""
    blob = _bucket(bucket_name).blob(blob_name)
    blob.delete()
