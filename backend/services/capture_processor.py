"""Vision Agents processor that feeds participant video into FrameCaptureController."""

from __future__ import annotations

import logging

from vision_agents.core.processors import VideoProcessor
from vision_agents.core.utils.video_forwarder import VideoForwarder

from services.frame_capture import FrameCaptureController, LatestFrameSource

logger = logging.getLogger(__name__)

# Forwarder delivery rate; capture itself samples far less often.
SOURCE_FPS = 1


class EngagementCaptureProcessor(VideoProcessor):
    """
    Attaches a LatestFrameSource to the shared forwarder of each participant
    track and runs one capture session per participant.
    Set the meeting via set_meeting_id() from join_call before frames arrive.
    """

    @property
    def name(self) -> str:
        return "engagement-capture"

    def __init__(
        self,
        controller: FrameCaptureController,
        *,
        interval_ms: int | None = None,
        fps: int = SOURCE_FPS,
    ) -> None:
        self._controller = controller
        self._interval_ms = interval_ms
        self._fps = fps
        self._meeting_id: str | None = None
        self._sources: dict[str, LatestFrameSource] = {}

    def set_meeting_id(self, meeting_id: str) -> None:
        self._meeting_id = meeting_id

    async def process_video(
        self,
        track: object,
        participant_id: str | None,
        shared_forwarder: VideoForwarder | None = None,
    ) -> None:
        if shared_forwarder is None or not participant_id:
            logger.warning("[capture_processor] No forwarder or participant; skipping capture.")
            return
        if not self._meeting_id:
            logger.warning("[capture_processor] Meeting id not set; skipping capture for %s.", participant_id)
            return
        if participant_id in self._sources:
            return

        source = LatestFrameSource()
        shared_forwarder.add_frame_handler(source.push, fps=self._fps, name=f"{self.name}-{participant_id}")
        self._sources[participant_id] = source
        self._controller.start_capture(source, participant_id, self._meeting_id, self._interval_ms)

    async def stop_processing(self) -> None:
        for participant_id in list(self._sources):
            self._controller.stop_capture(participant_id)
        self._sources.clear()

    async def close(self) -> None:
        await self.stop_processing()
        await self._controller.drain()
