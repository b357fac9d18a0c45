"""Greedy non-maximum suppression over normalized detections."""
from __future__ import annotations

from typing import Sequence

from assist_shared.events.schemas import Detection, Rect


def iou(a: Rect, b: Rect) -> float:
    """Intersection-over-union of two rects; 0.0 when they do not overlap."""
    ix1 = max(a.x1, b.x1)
    iy1 = max(a.y1, b.y1)
    ix2 = min(a.x2, b.x2)
    iy2 = min(a.y2, b.y2)
    if ix2 <= ix1 or iy2 <= iy1:
        return 0.0
    inter = (ix2 - ix1) * (iy2 - iy1)
    union = a.area + b.area - inter
    if union <= 0.0:
        return 0.0
    return inter / union


def suppress(
    detections: Sequence[Detection],
    iou_threshold: float = 0.45,
    class_aware: bool = False,
) -> list[Detection]:
    """Remove detections that overlap a more confident one.

    Detections are ranked by confidence (stable for ties). Each kept detection
    suppresses every lower-ranked one whose IoU with it is strictly above
    ``iou_threshold``. Labels are ignored unless ``class_aware`` is set, so a
    confident box can suppress an overlapping box of another class.

    Applying ``suppress`` to its own output returns it unchanged.
    """
    ranked = sorted(detections, key=lambda d: d.confidence, reverse=True)
    suppressed = [False] * len(ranked)
    kept: list[Detection] = []

    for i, det in enumerate(ranked):
        if suppressed[i]:
            continue
        kept.append(det)
        for j in range(i + 1, len(ranked)):
            if suppressed[j]:
                continue
            other = ranked[j]
            if class_aware and other.label != det.label:
                continue
            if iou(det.rect, other.rect) > iou_threshold:
                suppressed[j] = True

    return kept
