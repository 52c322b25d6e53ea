"""Object keys for frames/results and the ObjectStore seam over GCS."""

from __future__ import annotations

import logging
from typing import Protocol
from urllib.parse import quote, unquote

from models import FrameKey
from services import gcs
from services.errors import NotFoundError, TransientIOError, ValidationError

logger = logging.getLogger(__name__)

FRAMES_PREFIX = "frames/"
RESULTS_PREFIX = "results/"
IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "webp")


def encode_participant_id(participant_id: str) -> str:
    """Percent-encode every reserved character, including "/", "@" and "."."""
    return quote(participant_id, safe="").replace(".", "%2E")


def frame_object_key(
    meeting_id: str,
    participant_id: str,
    timestamp_ms: int,
    *,
    ext: str = "jpg",
    prefix: str = FRAMES_PREFIX,
) -> str:
    return f"{prefix}{meeting_id}/{encode_participant_id(participant_id)}/{int(timestamp_ms)}.{ext}"


def result_object_key(
    meeting_id: str,
    participant_id: str,
    timestamp_ms: int,
    *,
    prefix: str = RESULTS_PREFIX,
) -> str:
    return f"{prefix}{meeting_id}/{encode_participant_id(participant_id)}/{int(timestamp_ms)}.json"


def parse_frame_object_key(object_key: str, *, prefix: str = FRAMES_PREFIX) -> FrameKey:
    """
    Parse ``{prefix}{meetingId}/{encodedParticipantId}/{timestampMs}.{ext}``.

    Raises ValidationError for anything else.
    """
    if not object_key.startswith(prefix):
        raise ValidationError(f"object key {object_key!r} is outside {prefix!r}")
    parts = object_key[len(prefix):].split("/")
    if len(parts) != 3 or not all(parts):
        raise ValidationError(f"object key {object_key!r} must be meeting/participant/timestamp.ext")
    meeting_id, encoded_participant, filename = parts
    stem, dot, ext = filename.rpartition(".")
    if not dot or ext.lower() not in IMAGE_EXTENSIONS:
        raise ValidationError(f"object key {object_key!r} has unsupported extension")
    if not (stem.isascii() and stem.isdigit()):
        raise ValidationError(f"object key {object_key!r} has non-numeric timestamp {stem!r}")
    participant_id = unquote(encoded_participant)
    if not participant_id.strip():
        raise ValidationError(f"object key {object_key!r} has an empty participant id")
    return FrameKey(
        meeting_id=meeting_id,
        participant_id=participant_id,
        timestamp_ms=int(stem),
        ext=ext.lower(),
    )


class ObjectStore(Protocol):
    def upload(self, key: str, data: bytes, *, content_type: str = "image/jpeg") -> None: ...

    def download(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...


def _transient_errors() -> tuple[type[BaseException], ...]:
    """Client errors worth retrying: API errors plus connection-level failures."""
    import requests
    from google.api_core import exceptions as gexc
    from google.auth import exceptions as auth_exc

    return (
        gexc.GoogleAPIError,
        requests.exceptions.ConnectionError,
        requests.exceptions.Timeout,
        auth_exc.TransportError,
    )


class GcsObjectStore:
    """ObjectStore backed by services.gcs, translating client errors."""

    def __init__(self, bucket_name: str | None = None) -> None:
        self._bucket_name = bucket_name or gcs.get_bucket_name()

    @property
    def bucket_name(self) -> str:
        return self._bucket_name

    def upload(self, key: str, data: bytes, *, content_type: str = "image/jpeg") -> None:
        try:
            gcs.upload_blob(key, data, bucket_name=self._bucket_name, content_type=content_type)
        except _transient_errors() as exc:
            raise TransientIOError(f"upload of {key} failed: {exc}") from exc

    def download(self, key: str) -> bytes:
        from google.api_core import exceptions as gexc

        try:
            return gcs.download_blob(key, bucket_name=self._bucket_name)
        except gexc.NotFound as exc:
            raise NotFoundError(f"object {key} not found") from exc
        except _transient_errors() as exc:
            raise TransientIOError(f"download of {key} failed: {exc}") from exc

    def delete(self, key: str) -> None:
        from google.api_core import exceptions as gexc

        try:
            gcs.delete_blob(key, bucket_name=self._bucket_name)
        except gexc.NotFound:
            logger.info("[object_store] %s already deleted", key)
        except _transient_errors() as exc:
            raise TransientIOError(f"delete of {key} failed: {exc}") from exc
