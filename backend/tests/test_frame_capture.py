"""Tests for frame capture: encoding, interval floor, upload ceiling and session isolation."""

from __future__ import annotations

import asyncio
import threading

import av
import pytest

from models import FrameKey
from services.errors import TransientIOError
from services.frame_capture import (
    CaptureState,
    FrameCaptureController,
    FrameEncoder,
    LatestFrameSource,
    TickOutcome,
    UploadSlots,
)


def _dummy_video_frame(width: int = 64, height: int = 64) -> av.VideoFrame:
    """Create a minimal av.VideoFrame for testing (no numpy)."""
    frame = av.VideoFrame(width, height, "rgb24")
    frame.planes[0].update(b"\x80" * (width * height * 3))
    return frame


class _StubEncoder:
    def encode(self, frame: object) -> bytes:
        return b"jpeg-bytes"


class _StaticSource:
    async def grab_frame(self) -> object:
        return object()


class _BrokenSource:
    async def grab_frame(self) -> object:
        raise RuntimeError("camera unplugged")


class _RecordingUploader:
    def __init__(self, *, gate: threading.Event | None = None, fail: bool = False) -> None:
        self.gate = gate
        self.fail = fail
        self.calls: list[tuple[str, str, bytes, int]] = []

    def upload(self, meeting_id: str, participant_id: str, data: bytes, timestamp_ms: int) -> str:
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.fail:
            raise TransientIOError("upload failed")
        self.calls.append((meeting_id, participant_id, data, timestamp_ms))
        return f"frames/{meeting_id}/{participant_id}/{timestamp_ms}.jpg"


def _controller(uploader: _RecordingUploader, **kwargs) -> FrameCaptureController:
    kwargs.setdefault("encoder", _StubEncoder())
    kwargs.setdefault("autostart", False)
    kwargs.setdefault("clock", lambda: 1_700_000_000_000)
    return FrameCaptureController(uploader, **kwargs)  # type: ignore[arg-type]


def test_frame_encoder_produces_jpeg() -> None:
    data = FrameEncoder().encode(_dummy_video_frame())
    assert len(data) > 0
    # JPEG SOI marker
    assert data[:2] == b"\xff\xd8"


def test_interval_below_floor_is_clamped() -> None:
    controller = _controller(_RecordingUploader(), min_interval_ms=2000)
    session = controller.start_capture(_StaticSource(), "alice", "m1", interval_ms=1000)
    assert session.interval_ms == 2000


def test_default_interval_used_when_not_requested() -> None:
    controller = _controller(_RecordingUploader(), default_interval_ms=3000)
    assert controller.start_capture(_StaticSource(), "alice", "m1").interval_ms == 3000


def test_start_capture_is_idempotent_per_participant() -> None:
    controller = _controller(_RecordingUploader())
    first = controller.start_capture(_StaticSource(), "alice", "m1", interval_ms=5000)
    second = controller.start_capture(_StaticSource(), "alice", "m1", interval_ms=9000)
    assert second is first
    assert second.interval_ms == 5000
    assert controller.active_participants() == ["alice"]


def test_stop_capture_is_idempotent() -> None:
    controller = _controller(_RecordingUploader())
    session = controller.start_capture(_StaticSource(), "alice", "m1")
    assert controller.stop_capture("alice") is True
    assert controller.stop_capture("alice") is False
    assert session.state is CaptureState.IDLE
    assert controller.session("alice") is None


@pytest.mark.asyncio
async def test_upload_ceiling_drops_excess_ticks() -> None:
    gate = threading.Event()
    uploader = _RecordingUploader(gate=gate)
    controller = _controller(uploader, max_concurrent_uploads=3)
    participants = [f"p{i}" for i in range(5)]
    for pid in participants:
        controller.start_capture(_StaticSource(), pid, "m1")

    outcomes = await asyncio.gather(*(controller.tick(pid) for pid in participants))

    assert outcomes.count(TickOutcome.DISPATCHED) == 3
    assert outcomes.count(TickOutcome.DROPPED) == 2
    assert controller.slots.in_flight == 3

    gate.set()
    await controller.drain()

    # Dropped ticks are neither queued nor retried.
    assert len(uploader.calls) == 3
    assert controller.slots.in_flight == 0
    assert sum(controller.session(pid).dropped for pid in participants) == 2


@pytest.mark.asyncio
async def test_capture_failure_stops_only_that_session() -> None:
    uploader = _RecordingUploader()
    controller = _controller(uploader)
    controller.start_capture(_BrokenSource(), "broken", "m1")
    controller.start_capture(_StaticSource(), "healthy", "m1")

    assert await controller.tick("broken") is TickOutcome.FAILED
    assert await controller.tick("healthy") is TickOutcome.DISPATCHED
    await controller.drain()

    assert controller.session("broken") is None
    assert controller.session("healthy") is not None
    assert controller.slots.in_flight == 0
    assert [call[1] for call in uploader.calls] == ["healthy"]


@pytest.mark.asyncio
async def test_upload_failure_keeps_session_running() -> None:
    controller = _controller(_RecordingUploader(fail=True))
    controller.start_capture(_StaticSource(), "alice", "m1")

    assert await controller.tick("alice") is TickOutcome.DISPATCHED
    await controller.drain()

    session = controller.session("alice")
    assert session is not None
    assert session.state is CaptureState.CAPTURING
    assert session.upload_failures == 1
    assert controller.slots.in_flight == 0


@pytest.mark.asyncio
async def test_tick_without_frame_releases_slot() -> None:
    controller = _controller(_RecordingUploader(), max_concurrent_uploads=1)
    source = LatestFrameSource()
    controller.start_capture(source, "alice", "m1")

    assert await controller.tick("alice") is TickOutcome.NO_FRAME
    assert controller.slots.in_flight == 0

    source.push(object())  # type: ignore[arg-type]
    assert await controller.tick("alice") is TickOutcome.DISPATCHED
    await controller.drain()


@pytest.mark.asyncio
async def test_tick_for_unknown_participant_is_inactive() -> None:
    controller = _controller(_RecordingUploader())
    assert await controller.tick("nobody") is TickOutcome.INACTIVE


@pytest.mark.asyncio
async def test_upload_carries_keys_and_timestamp() -> None:
    uploader = _RecordingUploader()
    controller = _controller(uploader, clock=lambda: 42)
    controller.start_capture(_StaticSource(), "alice@example.com", "m1")
    await controller.tick("alice@example.com")
    await controller.drain()
    assert uploader.calls == [("m1", "alice@example.com", b"jpeg-bytes", 42)]


@pytest.mark.asyncio
async def test_autostart_ticks_immediately_and_stop_lets_inflight_upload_finish() -> None:
    gate = threading.Event()
    uploader = _RecordingUploader(gate=gate)
    controller = FrameCaptureController(uploader, encoder=_StubEncoder(), min_interval_ms=2000)  # type: ignore[arg-type]
    session = controller.start_capture(_StaticSource(), "alice", "m1", interval_ms=2000)

    for _ in range(5):
        await asyncio.sleep(0)
    assert session.dispatched == 1

    controller.stop_capture("alice")
    gate.set()
    await controller.drain()

    assert len(uploader.calls) == 1
    assert controller.slots.in_flight == 0


def test_upload_slots_never_exceed_limit() -> None:
    slots = UploadSlots(2)
    assert slots.try_acquire() and slots.try_acquire()
    assert slots.try_acquire() is False
    slots.release()
    assert slots.in_flight == 1


@pytest.mark.asyncio
async def test_successful_upload_records_frame_key() -> None:
    uploader = _RecordingUploader()
    controller = _controller(uploader)
    session = controller.start_capture(_StaticSource(), "alice@x.com", "m1")

    assert await controller.tick("alice@x.com") is TickOutcome.DISPATCHED
    await controller.drain()

    assert uploader.calls == [("m1", "alice@x.com", b"jpeg-bytes", 1_700_000_000_000)]
    assert session.last_uploaded == FrameKey("m1", "alice@x.com", 1_700_000_000_000)
