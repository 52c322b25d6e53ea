"""Frame capture: sample still frames per participant and upload them under backpressure."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from fractions import Fraction
from typing import Protocol

import av
from av import VideoFrame

from models import Frame, FrameKey
from services.errors import CaptureError
from services.uploader import FrameUploader

logger = logging.getLogger(__name__)

DEFAULT_CAPTURE_INTERVAL_MS = 3000
MIN_CAPTURE_INTERVAL_MS = 2000
MAX_CONCURRENT_UPLOADS = 3

# mjpeg expects full-range yuv
JPEG_PIX_FMT = "yuvj420p"


class FrameEncoder:
    """Encodes a single av.VideoFrame to JPEG bytes."""

    def encode(self, frame: VideoFrame) -> bytes:
        if frame.width <= 0 or frame.height <= 0:
            raise CaptureError(f"cannot encode empty frame {frame.width}x{frame.height}")
        codec = av.CodecContext.create("mjpeg", "w")
        codec.width = frame.width
        codec.height = frame.height
        codec.pix_fmt = JPEG_PIX_FMT
        codec.time_base = Fraction(1, 1)
        if frame.format is None or frame.format.name != JPEG_PIX_FMT:
            frame = frame.reformat(format=JPEG_PIX_FMT)
        frame.pts = 0
        packets = list(codec.encode(frame))
        packets.extend(codec.encode(None))
        data = b"".join(bytes(packet) for packet in packets)
        if not data:
            raise CaptureError("encoder produced no data")
        return data


class FrameSource(Protocol):
    async def grab_frame(self) -> VideoFrame | None: ...


class LatestFrameSource:
    """
    Holds the most recent frame pushed by a video forwarder.

    push() is the frame handler; grab_frame() returns the latest frame or
    None when nothing has arrived yet.
    """

    def __init__(self) -> None:
        self._frame: VideoFrame | None = None

    def push(self, frame: VideoFrame) -> None:
        self._frame = frame

    async def grab_frame(self) -> VideoFrame | None:
        return self._frame


class UploadSlots:
    """Process-wide count of in-flight uploads, safe across threads."""

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._limit = limit
        self._in_flight = 0
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def try_acquire(self) -> bool:
        with self._lock:
            if self._in_flight >= self._limit:
                return False
            self._in_flight += 1
            return True

    def release(self) -> None:
        with self._lock:
            if self._in_flight > 0:
                self._in_flight -= 1


class CaptureState(StrEnum):
    IDLE = "idle"
    CAPTURING = "capturing"


class TickOutcome(StrEnum):
    DISPATCHED = "dispatched"
    DROPPED = "dropped"            # upload ceiling reached
    NO_FRAME = "no_frame"          # source has nothing yet
    FAILED = "failed"              # capture error; session stopped
    INACTIVE = "inactive"          # no such session


@dataclass
class CaptureSession:
    participant_id: str
    meeting_id: str
    source: FrameSource
    interval_ms: int
    state: CaptureState = CaptureState.CAPTURING
    dispatched: int = 0
    dropped: int = 0
    upload_failures: int = 0
    last_uploaded: FrameKey | None = None
    task: asyncio.Task[None] | None = field(default=None, repr=False)


class FrameCaptureController:
    """
    Owns all capture sessions of one process.

    Each session ticks every ``interval_ms`` (never below the configured
    floor). A tick grabs and encodes a frame and dispatches its upload as
    a separate task; when ``max_concurrent_uploads`` uploads are already in
    flight the tick is dropped, not queued.

    With ``autostart=False`` no timers are created and callers drive
    sessions through tick().
    """

    def __init__(
        self,
        uploader: FrameUploader,
        *,
        min_interval_ms: int = MIN_CAPTURE_INTERVAL_MS,
        default_interval_ms: int = DEFAULT_CAPTURE_INTERVAL_MS,
        max_concurrent_uploads: int = MAX_CONCURRENT_UPLOADS,
        encoder: FrameEncoder | None = None,
        clock: Callable[[], int] | None = None,
        autostart: bool = True,
    ) -> None:
        self._uploader = uploader
        self._min_interval_ms = min_interval_ms
        self._default_interval_ms = default_interval_ms
        self._slots = UploadSlots(max_concurrent_uploads)
        self._encoder = encoder or FrameEncoder()
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._autostart = autostart
        self._sessions: dict[str, CaptureSession] = {}
        self._uploads: set[asyncio.Task[None]] = set()

    @property
    def slots(self) -> UploadSlots:
        return self._slots

    def session(self, participant_id: str) -> CaptureSession | None:
        return self._sessions.get(participant_id)

    def active_participants(self) -> list[str]:
        return list(self._sessions)

    def start_capture(
        self,
        source: FrameSource,
        participant_id: str,
        meeting_id: str,
        interval_ms: int | None = None,
    ) -> CaptureSession:
        existing = self._sessions.get(participant_id)
        if existing is not None:
            logger.info("[frame_capture] Capture session already exists for %s", participant_id)
            return existing

        requested = self._default_interval_ms if interval_ms is None else interval_ms
        effective = max(requested, self._min_interval_ms)
        if effective != requested:
            logger.warning(
                "[frame_capture] Requested interval %dms is too low, using %dms instead",
                requested,
                effective,
            )

        session = CaptureSession(
            participant_id=participant_id,
            meeting_id=meeting_id,
            source=source,
            interval_ms=effective,
        )
        self._sessions[participant_id] = session
        if self._autostart:
            session.task = asyncio.get_running_loop().create_task(
                self._run(session), name=f"capture-{participant_id}"
            )
        logger.info(
            "[frame_capture] Started capture for %s in meeting %s every %dms",
            participant_id,
            meeting_id,
            effective,
        )
        return session

    def stop_capture(self, participant_id: str) -> bool:
        session = self._sessions.pop(participant_id, None)
        if session is None:
            return False
        session.state = CaptureState.IDLE
        task = session.task
        session.task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        logger.info("[frame_capture] Stopped capture for %s", participant_id)
        return True

    def stop_all(self) -> None:
        for participant_id in list(self._sessions):
            self.stop_capture(participant_id)

    async def drain(self) -> None:
        """Wait for every dispatched upload to finish."""
        while self._uploads:
            await asyncio.gather(*list(self._uploads), return_exceptions=True)

    async def _run(self, session: CaptureSession) -> None:
        # First frame immediately, then one per interval.
        while session.state is CaptureState.CAPTURING:
            await self.tick(session.participant_id)
            if session.state is not CaptureState.CAPTURING:
                break
            await asyncio.sleep(session.interval_ms / 1000.0)

    async def tick(self, participant_id: str) -> TickOutcome:
        session = self._sessions.get(participant_id)
        if session is None or session.state is not CaptureState.CAPTURING:
            return TickOutcome.INACTIVE

        if not self._slots.try_acquire():
            session.dropped += 1
            logger.warning(
                "[frame_capture] Too many pending uploads (%d), skipping frame for %s",
                self._slots.limit,
                participant_id,
            )
            return TickOutcome.DROPPED

        dispatched = False
        try:
            frame = await session.source.grab_frame()
            if frame is None:
                return TickOutcome.NO_FRAME
            data = self._encoder.encode(frame)
            captured = Frame(
                meeting_id=session.meeting_id,
                participant_id=session.participant_id,
                timestamp_ms=self._clock(),
                image_bytes=data,
            )
            task = asyncio.get_running_loop().create_task(self._upload(session, captured))
            self._uploads.add(task)
            task.add_done_callback(self._uploads.discard)
            dispatched = True
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error("[frame_capture] Frame capture failed for %s: %s", participant_id, exc, exc_info=True)
            self.stop_capture(participant_id)
            return TickOutcome.FAILED
        finally:
            if not dispatched:
                self._slots.release()

        session.dispatched += 1
        return TickOutcome.DISPATCHED

    async def _upload(self, session: CaptureSession, frame: Frame) -> None:
        try:
            await asyncio.to_thread(
                self._uploader.upload,
                frame.meeting_id,
                frame.participant_id,
                frame.image_bytes,
                frame.timestamp_ms,
            )
        except Exception as exc:  # noqa: BLE001
            # Upload errors never end the session.
            session.upload_failures += 1
            logger.error(
                "[frame_capture] Upload failed for %s at %d: %s",
                frame.participant_id,
                frame.timestamp_ms,
                exc,
            )
        else:
            session.last_uploaded = frame.key
        finally:
            self._slots.release()
