"""
Pose Classification Module

Decides whether a single detected face satisfies one of the five capture
angles (front, left, right, up, down). The classifier is a pure function of
the measurement: no state, no I/O.

Per-frame pose estimates are noisy, so the Up/Down checks OR together
several independent cues (pitch angle, vertical position of the face box in
the frame, and the face box elongation). Down is deliberately easier to
satisfy than Up because users rarely tilt their chin down convincingly.

Two strictness levels exist:
    - STRICT: used for enrollment, where sample quality matters.
    - RELAXED: used for identification, where completion speed matters.

Usage:
    from faceid.pose import PoseAngle, PoseClassifier, PoseMeasurement, Strictness

    classifier = PoseClassifier(config)
    measurement = detection.to_measurement(frame_height=480)
    if classifier.matches(measurement, PoseAngle.LEFT, Strictness.STRICT):
        ...
"""

import math
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class PoseAngle(str, Enum):
    """The five head orientations requested during capture."""

    FRONT = "front"
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"

    @classmethod
    def priority_order(cls) -> List["PoseAngle"]:
        """Capture order: front first, then left, right, up, down."""
        return [cls.FRONT, cls.LEFT, cls.RIGHT, cls.UP, cls.DOWN]

    @property
    def instruction(self) -> str:
        """Human-readable prompt for a progress UI."""
        return _INSTRUCTIONS[self]


_INSTRUCTIONS = {
    PoseAngle.FRONT: "Look straight at the camera",
    PoseAngle.LEFT: "Turn your head slowly to the left",
    PoseAngle.RIGHT: "Turn your head slowly to the right",
    PoseAngle.UP: "Tilt your head up",
    PoseAngle.DOWN: "Tilt your head down",
}


class Strictness(str, Enum):
    """Threshold set used by the classifier."""

    STRICT = "strict"
    RELAXED = "relaxed"


@dataclass(frozen=True)
class PoseMeasurement:
    """
    Per-frame face orientation estimate.

    Attributes:
        yaw: Horizontal rotation in degrees. Positive means the face is turned
             toward the side requested by the LEFT prompt.
        pitch: Vertical rotation in degrees. Positive = up.
        bbox: Face box (left, top, width, height) in pixels.
        frame_height: Height of the source frame in pixels.
    """

    yaw: float
    pitch: float
    bbox: Tuple[float, float, float, float]
    frame_height: float

    @property
    def aspect_ratio(self) -> float:
        """Face box width / height."""
        _, _, width, height = self.bbox
        return width / height if height > 0 else 0.0

    @property
    def elongation(self) -> float:
        """Face box height / width (about 1.3 for a neutral face)."""
        _, _, width, height = self.bbox
        return height / width if width > 0 else 0.0

    @property
    def vertical_position(self) -> float:
        """Top of the face box as a fraction of the frame height."""
        _, top, _, _ = self.bbox
        return top / self.frame_height if self.frame_height > 0 else 0.0


@dataclass(frozen=True)
class PoseThresholds:
    """
    Angle thresholds for one strictness level.

    All angles are in degrees; positions are fractions of frame height.
    max_turn_yaw=None disables the upper bound on Left/Right turns.
    """

    front_yaw: float
    front_pitch: float
    turn_yaw: float
    max_turn_yaw: Optional[float]
    up_pitch: float
    up_position: float
    down_pitch: float
    down_position: float
    down_elongation_margin: float

    def override(self, values: Optional[Dict[str, Any]]) -> "PoseThresholds":
        """Return a copy with any known keys from `values` applied."""
        if not values:
            return self
        known = {f.name for f in fields(self)}
        return replace(self, **{k: v for k, v in values.items() if k in known})


STRICT_THRESHOLDS = PoseThresholds(
    front_yaw=12.0,
    front_pitch=12.0,
    turn_yaw=25.0,
    max_turn_yaw=60.0,
    up_pitch=15.0,
    up_position=0.45,
    down_pitch=12.0,
    down_position=0.12,
    down_elongation_margin=0.20,
)

RELAXED_THRESHOLDS = PoseThresholds(
    front_yaw=25.0,
    front_pitch=18.0,
    turn_yaw=10.0,
    max_turn_yaw=None,
    up_pitch=8.0,
    up_position=0.40,
    down_pitch=6.0,
    down_position=0.18,
    down_elongation_margin=0.15,
)


class PoseClassifier:
    """
    Maps a PoseMeasurement to "does this satisfy angle X" decisions.

    Args:
        config: Optional dictionary (the `pose` config section) with keys:
            - strict: overrides for STRICT_THRESHOLDS
            - relaxed: overrides for RELAXED_THRESHOLDS
            - median_elongation: neutral face height/width ratio (default 1.3)
            - off_axis_yaw: positional Up/Down cues only count while
              |yaw| is below this (default 25)
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if config is None:
            config = {}

        self.thresholds = {
            Strictness.STRICT: STRICT_THRESHOLDS.override(config.get("strict")),
            Strictness.RELAXED: RELAXED_THRESHOLDS.override(config.get("relaxed")),
        }
        self.median_elongation = config.get("median_elongation", 1.3)
        self.off_axis_yaw = config.get("off_axis_yaw", 25.0)

    def matches(
        self,
        measurement: PoseMeasurement,
        angle: PoseAngle,
        strictness: Strictness = Strictness.STRICT,
    ) -> bool:
        """
        Check whether a measurement satisfies the requested angle.

        Total over its inputs: non-finite angles never match.
        """
        if not (math.isfinite(measurement.yaw) and math.isfinite(measurement.pitch)):
            return False

        t = self.thresholds[Strictness(strictness)]
        yaw, pitch = measurement.yaw, measurement.pitch

        if angle == PoseAngle.FRONT:
            return abs(yaw) < t.front_yaw and abs(pitch) < t.front_pitch

        if angle == PoseAngle.LEFT:
            return yaw > t.turn_yaw and self._within_turn_limit(yaw, t)

        if angle == PoseAngle.RIGHT:
            return yaw < -t.turn_yaw and self._within_turn_limit(yaw, t)

        on_axis = abs(yaw) < self.off_axis_yaw

        if angle == PoseAngle.UP:
            return pitch > t.up_pitch or (
                on_axis and measurement.vertical_position > t.up_position
            )

        if angle == PoseAngle.DOWN:
            if pitch < -t.down_pitch:
                return True
            if not on_axis:
                return False
            if measurement.vertical_position < t.down_position:
                return True
            elongation = measurement.elongation
            return 0.0 < elongation < self.median_elongation - t.down_elongation_margin

        return False

    def classify(
        self, measurement: PoseMeasurement, strictness: Strictness = Strictness.STRICT
    ) -> List[PoseAngle]:
        """Return every angle the measurement satisfies, in priority order."""
        return [
            angle for angle in PoseAngle.priority_order()
            if self.matches(measurement, angle, strictness)
        ]

    @staticmethod
    def _within_turn_limit(yaw: float, t: PoseThresholds) -> bool:
        return t.max_turn_yaw is None or abs(yaw) <= t.max_turn_yaw
