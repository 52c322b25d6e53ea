"""Frame upload with bounded retry."""

from __future__ import annotations

import logging
import time
from typing import Callable

from services.errors import TransientIOError
from services.object_store import FRAMES_PREFIX, ObjectStore, frame_object_key

logger = logging.getLogger(__name__)

MAX_UPLOAD_ATTEMPTS = 3
UPLOAD_RETRY_DELAY_MS = 1000


class FrameUploader:
    """
    Writes captured frames to ``frames/{meeting}/{participant}/{ts}.jpg``.

    Transient failures are retried up to ``max_attempts`` times with
    ``retry_delay_ms * backoff ** (attempt - 1)`` between attempts. The last
    error is re-raised once attempts are exhausted.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        max_attempts: int = MAX_UPLOAD_ATTEMPTS,
        retry_delay_ms: int = UPLOAD_RETRY_DELAY_MS,
        backoff: float = 1.0,
        prefix: str = FRAMES_PREFIX,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self._max_attempts = max_attempts
        self._retry_delay_ms = retry_delay_ms
        self._backoff = backoff
        self._prefix = prefix
        self._sleep = sleep

    def upload(self, meeting_id: str, participant_id: str, data: bytes, timestamp_ms: int) -> str:
        """Upload one frame and return its object key."""
        key = frame_object_key(meeting_id, participant_id, timestamp_ms, prefix=self._prefix)
        attempt = 1
        while True:
            try:
                self._store.upload(key, data, content_type="image/jpeg")
            except TransientIOError as exc:
                if attempt >= self._max_attempts:
                    logger.error("[uploader] Giving up on %s after %d attempts: %s", key, attempt, exc)
                    raise
                delay_s = self._retry_delay_ms * (self._backoff ** (attempt - 1)) / 1000.0
                logger.warning(
                    "[uploader] Upload of %s failed (attempt %d/%d), retrying in %.2fs: %s",
                    key,
                    attempt,
                    self._max_attempts,
                    delay_s,
                    exc,
                )
                self._sleep(delay_s)
                attempt += 1
                continue
            logger.info("[uploader] Uploaded %d bytes to %s", len(data), key)
            return key
