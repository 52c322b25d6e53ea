from dataclasses import dataclass


@dataclass(frozen=True)
class FrameKey:
    meeting_id: str
    participant_id: str        # decoded; may contain "@", "." etc.
    timestamp_ms: int          # capture time, epoch milliseconds
    ext: str = "jpg"


@dataclass
class Frame:
    meeting_id: str
    participant_id: str
    timestamp_ms: int
    image_bytes: bytes

    @property
    def key(self) -> FrameKey:
        return FrameKey(self.meeting_id, self.participant_id, self.timestamp_ms)
