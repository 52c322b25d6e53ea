from __future__ import annotations

import av
import pytest

from services.capture_processor import EngagementCaptureProcessor
from services.frame_capture import FrameCaptureController, TickOutcome


def _dummy_video_frame(width: int = 32, height: int = 32) -> av.VideoFrame:
    frame = av.VideoFrame(width, height, "rgb24")
    frame.planes[0].update(b"\x40" * (width * height * 3))
    return frame


class _FakeForwarder:
    def __init__(self) -> None:
        self.handlers: list[tuple[object, int, str]] = []

    def add_frame_handler(self, handler, *, fps: int, name: str) -> None:  # noqa: ANN001
        self.handlers.append((handler, fps, name))

    def emit(self, frame: av.VideoFrame) -> None:
        for handler, _, _ in self.handlers:
            handler(frame)


class _RecordingUploader:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, int]] = []

    def upload(self, meeting_id: str, participant_id: str, data: bytes, timestamp_ms: int) -> str:
        self.calls.append((meeting_id, participant_id, timestamp_ms))
        return f"frames/{meeting_id}/{participant_id}/{timestamp_ms}.jpg"


def _processor(**kwargs) -> tuple[EngagementCaptureProcessor, FrameCaptureController, _RecordingUploader]:
    uploader = _RecordingUploader()
    controller = FrameCaptureController(uploader, autostart=False, clock=lambda: 4242)  # type: ignore[arg-type]
    return EngagementCaptureProcessor(controller, **kwargs), controller, uploader


@pytest.mark.asyncio
async def test_process_video_starts_one_session_per_participant() -> None:
    processor, controller, uploader = _processor(interval_ms=5000)
    processor.set_meeting_id("m1")
    forwarder = _FakeForwarder()

    await processor.process_video(object(), "alice", shared_forwarder=forwarder)
    await processor.process_video(object(), "alice", shared_forwarder=forwarder)

    assert controller.active_participants() == ["alice"]
    assert controller.session("alice").interval_ms == 5000
    assert len(forwarder.handlers) == 1
    assert forwarder.handlers[0][2] == "engagement-capture-alice"

    assert await controller.tick("alice") is TickOutcome.NO_FRAME
    forwarder.emit(_dummy_video_frame())
    assert await controller.tick("alice") is TickOutcome.DISPATCHED
    await processor.close()
    assert uploader.calls == [("m1", "alice", 4242)]
    assert controller.active_participants() == []


@pytest.mark.asyncio
async def test_process_video_without_meeting_is_skipped() -> None:
    processor, controller, _ = _processor()
    await processor.process_video(object(), "alice", shared_forwarder=_FakeForwarder())
    assert controller.active_participants() == []


@pytest.mark.asyncio
async def test_process_video_without_forwarder_is_skipped() -> None:
    processor, controller, _ = _processor()
    processor.set_meeting_id("m1")
    await processor.process_video(object(), "alice", shared_forwarder=None)
    assert controller.active_participants() == []
