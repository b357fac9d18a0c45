"""Frame-to-frame object tracker.

Lifecycle per object: PROVISIONAL → CONFIRMED → REMOVED.

* An unmatched detection starts a provisional track.
* A track becomes confirmed once it has been matched on
  ``min_confirmation_frames`` consecutive updates and its confidence is at
  least ``display_confidence``.
* A track unseen for longer than ``max_detection_age`` is removed. It is
  published once, in the ``removed`` field of that update's snapshot.

Association is greedy: each track, in creation order, takes the first
unclaimed detection with the same label whose IoU with the track's last raw
rect exceeds ``match_iou_threshold``.

``update`` has a single writer. After every update the tracker publishes a
frozen TrackSnapshot; readers on other threads only ever see whole snapshots.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Sequence

from assist_shared.clock import Clock, MonotonicClock
from assist_shared.events.schemas import (
    Detection,
    Rect,
    TrackSnapshot,
    TrackState,
    TrackView,
)
from assist_shared.logging import get_logger

from narrator.suppressor import iou

log = get_logger(__name__)


@dataclass(frozen=True)
class TrackerConfig:
    match_iou_threshold: float = 0.4
    smoothing_factor: float = 0.3  # EMA weight of the newest rect
    min_confirmation_frames: int = 2
    max_detection_age: float = 0.5  # seconds
    fade_start_age: float = 0.25  # seconds
    display_confidence: float = 0.5


def _blend(old: Rect, new: Rect, alpha: float) -> Rect:
    keep = 1.0 - alpha
    return Rect.clamped(
        old.x1 * keep + new.x1 * alpha,
        old.y1 * keep + new.y1 * alpha,
        old.x2 * keep + new.x2 * alpha,
        old.y2 * keep + new.y2 * alpha,
    )


@dataclass
class TrackedObject:
    label: str
    confidence: float
    raw_rect: Rect
    smoothed_rect: Rect
    first_seen: float
    last_seen: float
    consecutive_frames: int = 1
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def from_detection(cls, det: Detection, now: float) -> TrackedObject:
        return cls(
            label=det.label,
            confidence=det.confidence,
            raw_rect=det.rect,
            smoothed_rect=det.rect,
            first_seen=now,
            last_seen=now,
        )

    def matches(self, det: Detection, iou_threshold: float) -> bool:
        return det.label == self.label and iou(self.raw_rect, det.rect) > iou_threshold

    def absorb(self, det: Detection, now: float, alpha: float) -> None:
        self.label = det.label
        self.confidence = det.confidence
        self.last_seen = now
        self.consecutive_frames += 1
        self.smoothed_rect = _blend(self.smoothed_rect, det.rect, alpha)
        self.raw_rect = det.rect

    def age(self, now: float) -> float:
        return now - self.last_seen

    def state(self, cfg: TrackerConfig) -> TrackState:
        if (
            self.consecutive_frames >= cfg.min_confirmation_frames
            and self.confidence >= cfg.display_confidence
        ):
            return TrackState.CONFIRMED
        return TrackState.PROVISIONAL

    def view(self, cfg: TrackerConfig) -> TrackView:
        return TrackView(
            id=self.id,
            label=self.label,
            confidence=self.confidence,
            rect=self.smoothed_rect,
            raw_rect=self.raw_rect,
            first_seen=self.first_seen,
            last_seen=self.last_seen,
            consecutive_frames=self.consecutive_frames,
            state=self.state(cfg),
        )


def fade_weight(age: float, fade_start_age: float, max_age: float) -> float:
    """1.0 up to ``fade_start_age``, then linear down to 0.0 at ``max_age``."""
    if age <= fade_start_age:
        return 1.0
    if age >= max_age:
        return 0.0
    return 1.0 - (age - fade_start_age) / (max_age - fade_start_age)


class Tracker:
    """Maintains tracked objects across frames.

    Args:
        config: Matching, smoothing, confirmation and expiry parameters.
        clock: Time source used when ``now`` is not passed explicitly.
    """

    def __init__(self, config: TrackerConfig | None = None, clock: Clock | None = None) -> None:
        self._cfg = config or TrackerConfig()
        self._clock = clock or MonotonicClock()
        self._objects: list[TrackedObject] = []
        self._snapshot = TrackSnapshot(taken_at=self._clock.now())

    @property
    def config(self) -> TrackerConfig:
        return self._cfg

    def update(self, detections: Sequence[Detection], now: float | None = None) -> TrackSnapshot:
        """Match, smooth, create and prune in one step; returns the new snapshot."""
        if now is None:
            now = self._clock.now()
        cfg = self._cfg

        claimed = [False] * len(detections)
        for obj in self._objects:
            for i, det in enumerate(detections):
                if claimed[i] or not obj.matches(det, cfg.match_iou_threshold):
                    continue
                claimed[i] = True
                was_confirmed = obj.state(cfg) is TrackState.CONFIRMED
                obj.absorb(det, now, cfg.smoothing_factor)
                if not was_confirmed and obj.state(cfg) is TrackState.CONFIRMED:
                    log.debug(
                        "track_confirmed",
                        track_id=obj.id,
                        label=obj.label,
                        frames=obj.consecutive_frames,
                    )
                break

        for i, det in enumerate(detections):
            if claimed[i]:
                continue
            obj = TrackedObject.from_detection(det, now)
            self._objects.append(obj)
            log.debug("track_created", track_id=obj.id, label=obj.label)

        live: list[TrackedObject] = []
        removed: list[TrackView] = []
        for obj in self._objects:
            if obj.age(now) > cfg.max_detection_age:
                removed.append(obj.view(cfg).model_copy(update={"state": TrackState.REMOVED}))
                log.debug(
                    "track_removed",
                    track_id=obj.id,
                    label=obj.label,
                    frames=obj.consecutive_frames,
                    lifetime_s=round(obj.last_seen - obj.first_seen, 3),
                )
            else:
                live.append(obj)
        self._objects = live

        self._snapshot = TrackSnapshot(
            taken_at=now,
            tracks=tuple(obj.view(cfg) for obj in self._objects),
            removed=tuple(removed),
        )
        return self._snapshot

    def snapshot(self) -> TrackSnapshot:
        """The snapshot published by the most recent update."""
        return self._snapshot

    def confirmed(self, now: float | None = None) -> tuple[TrackView, ...]:
        """Confirmed tracks that are still displayable, with fade weights at ``now``."""
        if now is None:
            now = self._clock.now()
        cfg = self._cfg
        snapshot = self._snapshot

        views: list[TrackView] = []
        for view in snapshot.tracks:
            if view.state is not TrackState.CONFIRMED:
                continue
            age = now - view.last_seen
            if age > cfg.max_detection_age:
                continue
            weight = fade_weight(max(age, 0.0), cfg.fade_start_age, cfg.max_detection_age)
            views.append(view.model_copy(update={"fade_weight": weight}))
        return tuple(views)

    def reset(self) -> None:
        self._objects = []
        self._snapshot = TrackSnapshot(taken_at=self._clock.now())

    def __len__(self) -> int:
        return len(self._objects)
