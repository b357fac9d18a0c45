"""Pydantic v2 schemas for everything that crosses a component boundary.

Flow per frame:
  Observation / tensor  — inference engine output
  Detection             — decoder + suppressor output, tracker + announcer input
  TrackView             — one confirmed or provisional track, renderer input
  TrackSnapshot         — immutable tracker state handed to readers after update
  Announcement          — one started utterance
  FrameResult           — everything the pipeline produced for one frame

All rect coordinates are normalized to [0,1] with a top-left origin.
"""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


# ── Geometry ──────────────────────────────────────────────────────────────────

class Rect(_FrozenModel):
    """Axis-aligned box in normalized image coordinates."""

    x1: float = Field(ge=0.0, le=1.0)
    y1: float = Field(ge=0.0, le=1.0)
    x2: float = Field(ge=0.0, le=1.0)
    y2: float = Field(ge=0.0, le=1.0)

    @classmethod
    def clamped(cls, x1: float, y1: float, x2: float, y2: float) -> Rect:
        """Build a Rect from arbitrary corners, clamping into the unit square."""
        x1, y1 = _clamp01(x1), _clamp01(y1)
        x2, y2 = max(x1, _clamp01(x2)), max(y1, _clamp01(y2))
        return cls(x1=x1, y1=y1, x2=x2, y2=y2)

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def area(self) -> float:
        return self.width * self.height

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.x1, self.y1, self.x2, self.y2)


# ── Decoder / suppressor output ───────────────────────────────────────────────

class Observation(_FrozenModel):
    """A per-object result emitted natively by some inference engines."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    rect: Rect


class Detection(_FrozenModel):
    """One candidate object in one frame."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    rect: Rect


# ── Tracker output ────────────────────────────────────────────────────────────

class TrackState(str, Enum):
    PROVISIONAL = "provisional"
    CONFIRMED = "confirmed"
    REMOVED = "removed"


class TrackView(_FrozenModel):
    """Read-only copy of one tracked object.

    ``rect`` is the smoothed rect; ``raw_rect`` is the last matched detection.
    """

    id: str
    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    rect: Rect
    raw_rect: Rect
    first_seen: float
    last_seen: float
    consecutive_frames: int = Field(ge=1)
    state: TrackState
    fade_weight: float = Field(default=1.0, ge=0.0, le=1.0)


class TrackSnapshot(_FrozenModel):
    """All live tracks as of one tracker update."""

    taken_at: float
    tracks: tuple[TrackView, ...] = ()
    removed: tuple[TrackView, ...] = Field(
        default=(), description="Tracks pruned by this update, state REMOVED"
    )


# ── Announcer output ──────────────────────────────────────────────────────────

class Announcement(_FrozenModel):
    text: str
    labels: tuple[str, ...] = Field(description="New labels, most confident first")
    spoken_at: float


# ── Pipeline output ───────────────────────────────────────────────────────────

class FrameResult(_FrozenModel):
    detections: tuple[Detection, ...] = ()
    tracks: tuple[TrackView, ...] = Field(
        default=(), description="Confirmed tracks with fade weights"
    )
    announcement: Announcement | None = None
