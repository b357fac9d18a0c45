"""Unit tests for IoU and non-maximum suppression."""
from __future__ import annotations

import pytest

from assist_shared.events.schemas import Detection, Rect
from narrator.suppressor import iou, suppress


def _rect(x1: float, y1: float, x2: float, y2: float) -> Rect:
    return Rect(x1=x1, y1=y1, x2=x2, y2=y2)


def _det(label: str, conf: float, rect: Rect) -> Detection:
    return Detection(label=label, confidence=conf, rect=rect)


# ── IoU ───────────────────────────────────────────────────────────────────────

def test_iou_identical_is_one():
    r = _rect(0.1, 0.1, 0.4, 0.5)
    assert iou(r, r) == pytest.approx(1.0)


def test_iou_disjoint_is_zero():
    assert iou(_rect(0.0, 0.0, 0.2, 0.2), _rect(0.5, 0.5, 0.7, 0.7)) == 0.0


def test_iou_touching_edges_is_zero():
    assert iou(_rect(0.0, 0.0, 0.5, 0.5), _rect(0.5, 0.0, 1.0, 0.5)) == 0.0


def test_iou_half_shifted():
    # overlap 0.25 x 0.5 = 0.125; union 0.25 + 0.25 - 0.125 = 0.375
    a = _rect(0.0, 0.0, 0.5, 0.5)
    b = _rect(0.25, 0.0, 0.75, 0.5)
    assert iou(a, b) == pytest.approx(1 / 3)


def test_iou_zero_area_rects():
    p = _rect(0.3, 0.3, 0.3, 0.3)
    assert iou(p, p) == 0.0


# ── Suppression ───────────────────────────────────────────────────────────────

def test_overlapping_lower_confidence_is_suppressed():
    high = _det("person", 0.9, _rect(0.1, 0.1, 0.5, 0.5))
    low = _det("person", 0.6, _rect(0.12, 0.1, 0.52, 0.5))
    assert iou(high.rect, low.rect) > 0.45
    assert suppress([low, high], 0.45) == [high]


def test_moderate_overlap_keeps_both():
    a = _det("person", 0.9, _rect(0.0, 0.0, 0.5, 0.5))
    b = _det("person", 0.6, _rect(0.25, 0.0, 0.75, 0.5))
    assert suppress([a, b], 0.45) == [a, b]


def test_overlap_exactly_at_threshold_keeps_both():
    a = _det("person", 0.9, _rect(0.0, 0.0, 0.5, 0.5))
    b = _det("person", 0.6, _rect(0.25, 0.0, 0.75, 0.5))
    assert suppress([a, b], iou(a.rect, b.rect)) == [a, b]


def test_output_ordered_by_confidence():
    a = _det("cup", 0.3, _rect(0.0, 0.0, 0.1, 0.1))
    b = _det("dog", 0.8, _rect(0.5, 0.5, 0.7, 0.7))
    c = _det("cat", 0.5, _rect(0.8, 0.0, 0.9, 0.1))
    assert [d.label for d in suppress([a, b, c])] == ["dog", "cat", "cup"]


def test_suppression_crosses_labels_by_default():
    person = _det("person", 0.9, _rect(0.1, 0.1, 0.5, 0.5))
    chair = _det("chair", 0.7, _rect(0.1, 0.1, 0.5, 0.52))
    assert suppress([person, chair], 0.45) == [person]


def test_class_aware_suppression_keeps_other_labels():
    person = _det("person", 0.9, _rect(0.1, 0.1, 0.5, 0.5))
    chair = _det("chair", 0.7, _rect(0.1, 0.1, 0.5, 0.52))
    assert suppress([person, chair], 0.45, class_aware=True) == [person, chair]


def test_suppressed_box_does_not_suppress_others():
    # b is removed by a; c overlaps b heavily but not a, so c must survive
    a = _det("x", 0.9, _rect(0.0, 0.0, 0.4, 0.4))
    b = _det("x", 0.8, _rect(0.1, 0.0, 0.5, 0.4))
    c = _det("x", 0.7, _rect(0.2, 0.0, 0.6, 0.4))
    assert iou(a.rect, b.rect) > 0.45
    assert iou(b.rect, c.rect) > 0.45
    assert iou(a.rect, c.rect) <= 0.45
    assert suppress([a, b, c], 0.45) == [a, c]


def test_suppress_is_idempotent():
    dets = [
        _det("person", 0.9, _rect(0.1, 0.1, 0.5, 0.5)),
        _det("person", 0.85, _rect(0.11, 0.1, 0.51, 0.5)),
        _det("dog", 0.7, _rect(0.6, 0.6, 0.9, 0.9)),
        _det("dog", 0.4, _rect(0.62, 0.6, 0.92, 0.9)),
        _det("cup", 0.3, _rect(0.0, 0.8, 0.1, 0.9)),
    ]
    once = suppress(dets, 0.45)
    assert suppress(once, 0.45) == once
    assert len(once) == 3


def test_suppress_empty():
    assert suppress([]) == []
