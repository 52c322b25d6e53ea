from __future__ import annotations

from typing import Any

import pytest

from services.errors import NotFoundError, TransientIOError


class MemoryObjects:
    """ObjectStore double keeping objects in a dict."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.downloads: list[str] = []
        self.fail_download: Exception | None = None
        self.fail_delete: Exception | None = None

    def upload(self, key: str, data: bytes, *, content_type: str = "image/jpeg") -> None:
        self.objects[key] = data
        self.content_types[key] = content_type

    def download(self, key: str) -> bytes:
        self.downloads.append(key)
        if self.fail_download is not None:
            raise self.fail_download
        if key not in self.objects:
            raise NotFoundError(key)
        return self.objects[key]

    def delete(self, key: str) -> None:
        if self.fail_delete is not None:
            raise self.fail_delete
        self.objects.pop(key, None)


def make_face(
    *,
    score: float = 0.9,
    yaw: float = 0.0,
    pitch: float = 0.0,
    emotions: dict[str, float] | None = None,
    eyes_open: bool = True,
) -> dict[str, Any]:
    """A detected face in the shape FaceAnalyzer expects: centered, looking at the camera."""
    mesh = [[0.5, 0.5, 0.0] for _ in range(468)]
    mesh[159] = [0.4, 0.45, 0.0]
    mesh[386] = [0.6, 0.45, 0.0]
    bottom = 0.5 if eyes_open else 0.455
    mesh[145] = [0.4, bottom, 0.0]
    mesh[374] = [0.6, bottom, 0.0]
    emotions = emotions if emotions is not None else {"happy": 0.8, "neutral": 0.2}
    return {
        "score": score,
        "box": [0.0, 0.0, 1.0, 1.0],
        "mesh": mesh,
        "rotation": {
            "angle": {"roll": 0.0, "pitch": pitch, "yaw": yaw},
            "gaze": {"bearing": 0.0, "strength": 0.0},
        },
        "emotion": [{"emotion": name, "score": value} for name, value in emotions.items()],
    }


class FakeFaceModel:
    def __init__(self, faces: list[dict[str, Any]] | None = None) -> None:
        self.faces = [make_face()] if faces is None else faces
        self.images: list[bytes] = []

    def detect(self, image: bytes) -> list[dict[str, Any]]:
        self.images.append(image)
        return self.faces


@pytest.fixture
def memory_objects() -> MemoryObjects:
    return MemoryObjects()


@pytest.fixture
def face_model() -> FakeFaceModel:
    return FakeFaceModel()


@pytest.fixture
def transient_error() -> TransientIOError:
    return TransientIOError("backend unavailable")
