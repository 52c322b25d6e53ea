"""Face analysis adapter: face-model output -> FeatureSet, plus model deployment checks."""

from __future__ import annotations

import importlib
import json
import logging
import math
import os
import threading
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Callable, Protocol

import numpy as np

from models import EMOTIONS, EmotionDistribution, FeatureSet, GazeVector, HeadPose, Landmarks, Point
from models.features import finite_float
from services.errors import ConfigurationError, NoFaceDetected

logger = logging.getLogger(__name__)

# 468-point face mesh indices
LEFT_EYE_TOP, LEFT_EYE_BOTTOM = 159, 145
RIGHT_EYE_TOP, RIGHT_EYE_BOTTOM = 386, 374
NOSE_TIP = 1
LEFT_MOUTH, RIGHT_MOUTH = 61, 291

EYE_OPEN_THRESHOLD = 0.02
MAX_EYE_VERTICAL_DEVIATION = 0.3
MAX_SCREEN_YAW_RAD = 0.5
MAX_SCREEN_PITCH_RAD = 0.3

# Model labels that differ from FeatureSet channel names.
_EMOTION_ALIASES = {"surprise": "surprised"}


class FaceModel(Protocol):
    """
    Black-box face model. detect() returns one mapping per detected face:
      - score: detection confidence
      - box: [x0, y0, x1, y1]
      - mesh: (468, 2|3) normalized landmark coordinates
      - rotation: {"angle": {roll, pitch, yaw} in radians, "gaze": {bearing, strength}}
      - emotion: [{"emotion": label, "score": p}, ...]
    """

    def detect(self, image: bytes) -> Sequence[Mapping[str, Any]]: ...


def load_model_factory(target: str) -> Callable[[], FaceModel]:
    """Resolve ``package.module:callable`` to a model factory."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"FACE_MODEL_FACTORY must look like 'module:callable', got {target!r}")
    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationError(f"cannot load face model factory {target!r}: {exc}") from exc
    if not callable(factory):
        raise ConfigurationError(f"face model factory {target!r} is not callable")
    return factory


def validate_model_deployment(model_dir: str, required: Iterable[str]) -> list[str]:
    """
    Check that every required model file exists, is readable and is valid JSON.

    Returns the files found; raises ConfigurationError listing missing and
    invalid models otherwise.
    """
    if not os.path.isdir(model_dir):
        raise ConfigurationError(f"Model directory not found at: {model_dir}")
    found = sorted(os.listdir(model_dir))
    logger.info("[feature_extraction] Validating models at %s: %s", model_dir, found)

    missing: list[str] = []
    invalid: list[str] = []
    for name in required:
        path = os.path.join(model_dir, name)
        if not os.path.isfile(path):
            missing.append(name)
            continue
        try:
            with open(path, encoding="utf-8") as fh:
                json.load(fh)
        except (OSError, ValueError) as exc:
            logger.error("[feature_extraction] Invalid model file %s: %s", name, exc)
            invalid.append(name)

    if missing or invalid:
        lines = ["Model validation failed:"]
        if missing:
            lines.append(f"Missing models: {', '.join(missing)}")
        if invalid:
            lines.append(f"Invalid models: {', '.join(invalid)}")
        raise ConfigurationError("\n".join(lines))
    return found


class FaceAnalyzer:
    """Thin wrapper around a face model producing one FeatureSet per frame."""

    def __init__(
        self,
        *,
        model: FaceModel | None = None,
        model_factory: Callable[[], FaceModel] | None = None,
    ) -> None:
        self._model = model
        self._model_factory = model_factory
        self._model_lock = threading.Lock()

    def _ensure_model(self) -> FaceModel:
        if self._model is not None:
            return self._model
        if self._model_factory is None:
            raise ConfigurationError("no face model configured (set FACE_MODEL_FACTORY)")
        # Events are handled on a threadpool; build the model only once.
        with self._model_lock:
            if self._model is None:
                logger.info("[feature_extraction] Loading face model")
                self._model = self._model_factory()
        return self._model

    def analyze(self, image: bytes) -> FeatureSet:
        faces = list(self._ensure_model().detect(image) or [])
        if not faces:
            raise NoFaceDetected("No face detected in the image")
        return self.features_from_face(faces[0])

    @staticmethod
    def _mesh(face: Mapping[str, Any]) -> np.ndarray:
        try:
            mesh = np.asarray(face.get("mesh") or [], dtype=float)
        except (TypeError, ValueError):
            return np.zeros((0, 2))
        if mesh.ndim != 2 or mesh.shape[1] < 2:
            return np.zeros((0, 2))
        return np.nan_to_num(mesh[:, :2])

    @staticmethod
    def _point(mesh: np.ndarray, index: int) -> Point:
        if index >= mesh.shape[0]:
            return Point()
        return Point(float(mesh[index, 0]), float(mesh[index, 1]))

    @classmethod
    def eyes_open(cls, mesh: np.ndarray) -> bool:
        needed = max(LEFT_EYE_TOP, LEFT_EYE_BOTTOM, RIGHT_EYE_TOP, RIGHT_EYE_BOTTOM)
        if mesh.shape[0] <= needed:
            return False
        left = abs(mesh[LEFT_EYE_TOP, 1] - mesh[LEFT_EYE_BOTTOM, 1])
        right = abs(mesh[RIGHT_EYE_TOP, 1] - mesh[RIGHT_EYE_BOTTOM, 1])
        return bool(left > EYE_OPEN_THRESHOLD and right > EYE_OPEN_THRESHOLD)

    @classmethod
    def is_looking_at_screen(cls, mesh: np.ndarray, box: Sequence[float] | None, angles: Mapping[str, Any]) -> bool:
        if mesh.shape[0] <= RIGHT_EYE_TOP or not box or len(box) < 4:
            return False
        _, y0, _, y1 = (finite_float(v) for v in box[:4])
        height = y1 - y0
        if height <= 0:
            return False
        center_y = (y0 + y1) / 2
        eye_y = (mesh[LEFT_EYE_TOP, 1] + mesh[RIGHT_EYE_TOP, 1]) / 2
        deviation = abs(eye_y - center_y) / height
        yaw = abs(finite_float(angles.get("yaw")))
        pitch = abs(finite_float(angles.get("pitch")))
        return bool(deviation < MAX_EYE_VERTICAL_DEVIATION and yaw < MAX_SCREEN_YAW_RAD and pitch < MAX_SCREEN_PITCH_RAD)

    @classmethod
    def features_from_face(cls, face: Mapping[str, Any]) -> FeatureSet:
        mesh = cls._mesh(face)
        rotation = face.get("rotation") or {}
        angles = rotation.get("angle") or {}
        gaze = rotation.get("gaze") or {}

        emotions: dict[str, float] = {name: 0.0 for name in EMOTIONS}
        for item in face.get("emotion") or []:
            label = _EMOTION_ALIASES.get(str(item.get("emotion")), str(item.get("emotion")))
            if label in emotions:
                emotions[label] = finite_float(item.get("score"))
        dominant = max((finite_float(item.get("score")) for item in face.get("emotion") or []), default=0.0)

        strength = finite_float(gaze.get("strength"))
        bearing = finite_float(gaze.get("bearing"))
        return FeatureSet(
            landmarks=Landmarks(
                left_eye=cls._point(mesh, LEFT_EYE_TOP),
                right_eye=cls._point(mesh, RIGHT_EYE_TOP),
                nose=cls._point(mesh, NOSE_TIP),
                left_mouth=cls._point(mesh, LEFT_MOUTH),
                right_mouth=cls._point(mesh, RIGHT_MOUTH),
            ),
            head_pose=HeadPose(
                roll=math.degrees(finite_float(angles.get("roll"))),
                pitch=math.degrees(finite_float(angles.get("pitch"))),
                yaw=math.degrees(finite_float(angles.get("yaw"))),
            ),
            eyes_open=cls.eyes_open(mesh),
            emotions=EmotionDistribution(**emotions),
            emotion_confidence=dominant,
            gaze_vector=GazeVector(
                x=strength * math.cos(bearing),
                y=strength * math.sin(bearing),
                z=finite_float(angles.get("pitch")),
            ),
            is_looking_at_screen=cls.is_looking_at_screen(mesh, face.get("box"), angles),
            gaze_confidence=finite_float(face.get("score")),
        )
