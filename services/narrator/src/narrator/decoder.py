"""Detection decoder — turns raw inference output into Detection objects.

Accepts either representation an inference engine can produce:

* a dense YOLO-style tensor laid out ``[4 + C, N]`` (an optional leading batch
  axis of size 1 is squeezed): rows 0-3 are centre-x, centre-y, width, height
  in model-input pixels, rows 4.. are per-class scores;
* a sequence of already-decoded ``(label, confidence, rect)`` observations.

Decoding never raises: a tensor of the wrong shape is logged and yields an
empty list.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

import numpy as np

from assist_shared.events.schemas import Detection, Observation, Rect
from assist_shared.logging import get_logger

from narrator.vocabulary import Vocabulary

log = get_logger(__name__)

_BOX_PARAMS = 4


class ShapeMismatch(ValueError):
    """The tensor does not match the expected ``[4 + C, N]`` layout."""


@dataclass(frozen=True)
class DecoderConfig:
    conf_threshold: float = 0.25
    input_size: tuple[int, int] = (640, 640)  # (width, height) of the model input
    min_box_fraction: float = 0.02
    max_box_fraction: float = 0.95
    num_classes: int | None = None  # None → vocabulary size


class Decoder:
    """Decodes one frame's inference output.

    Args:
        vocabulary: Index → label mapping for the model's class heads.
        config: Thresholds and model geometry.
    """

    def __init__(self, vocabulary: Vocabulary, config: DecoderConfig | None = None) -> None:
        self._vocab = vocabulary
        self._cfg = config or DecoderConfig()

    @property
    def num_classes(self) -> int:
        if self._cfg.num_classes is not None:
            return self._cfg.num_classes
        return len(self._vocab)

    def decode(self, output: Any) -> list[Detection]:
        """Decode a tensor or an observation list; ``None`` means no output."""
        if output is None:
            return []
        if hasattr(output, "shape"):
            return self.decode_tensor(output)
        return self.decode_observations(output)

    # ------------------------------------------------------------------
    # Dense tensor
    # ------------------------------------------------------------------

    def decode_tensor(self, tensor: Any) -> list[Detection]:
        try:
            preds = self._as_predictions(tensor)
        except ShapeMismatch as exc:
            log.warning(
                "decoder_shape_mismatch",
                error=str(exc),
                expected_channels=_BOX_PARAMS + self.num_classes,
            )
            return []

        num_candidates = preds.shape[1]
        if num_candidates == 0:
            return []

        scores = preds[_BOX_PARAMS:]
        best_idx = scores.argmax(axis=0)
        best_score = scores[best_idx, np.arange(num_candidates)]

        keep = best_score >= self._cfg.conf_threshold
        if not keep.any():
            return []

        in_w, in_h = self._cfg.input_size
        cx, cy, bw, bh = preds[:_BOX_PARAMS, keep]
        x1 = np.clip((cx - bw / 2.0) / in_w, 0.0, 1.0)
        y1 = np.clip((cy - bh / 2.0) / in_h, 0.0, 1.0)
        x2 = np.clip((cx + bw / 2.0) / in_w, 0.0, 1.0)
        y2 = np.clip((cy + bh / 2.0) / in_h, 0.0, 1.0)

        lo, hi = self._cfg.min_box_fraction, self._cfg.max_box_fraction
        norm_w = x2 - x1
        norm_h = y2 - y1
        in_band = (norm_w >= lo) & (norm_w <= hi) & (norm_h >= lo) & (norm_h <= hi)

        kept_idx = best_idx[keep]
        kept_score = best_score[keep]

        detections: list[Detection] = []
        for i in np.flatnonzero(in_band):
            detections.append(
                Detection(
                    label=self._vocab.label_for(int(kept_idx[i])),
                    confidence=min(1.0, float(kept_score[i])),
                    rect=Rect.clamped(x1[i], y1[i], x2[i], y2[i]),
                )
            )

        log.debug(
            "tensor_decoded",
            candidates=num_candidates,
            above_threshold=int(keep.sum()),
            detections=len(detections),
        )
        return detections

    def _as_predictions(self, tensor: Any) -> np.ndarray:
        try:
            preds = np.asarray(tensor, dtype=np.float32)
        except (TypeError, ValueError) as exc:
            raise ShapeMismatch(f"not a numeric tensor: {exc}") from exc

        if preds.ndim == 3 and preds.shape[0] == 1:
            preds = preds[0]
        if preds.ndim != 2:
            raise ShapeMismatch(f"expected rank 2 [4+C, N], got shape {preds.shape}")

        if self.num_classes < 1:
            raise ShapeMismatch("no class heads configured")

        expected = _BOX_PARAMS + self.num_classes
        if preds.shape[0] != expected:
            raise ShapeMismatch(f"expected {expected} channels, got {preds.shape[0]}")
        return preds

    # ------------------------------------------------------------------
    # Pre-decoded observations
    # ------------------------------------------------------------------

    def decode_observations(self, observations: Iterable[Any]) -> list[Detection]:
        """Pass observations through as detections; malformed entries are skipped."""
        detections: list[Detection] = []
        skipped = 0
        try:
            items = list(observations)
        except TypeError:
            log.warning("decoder_unsupported_output", output_type=type(observations).__name__)
            return []

        for item in items:
            try:
                detections.append(_observation_to_detection(item))
            except (TypeError, ValueError) as exc:
                skipped += 1
                log.debug("observation_skipped", error=str(exc))

        if skipped:
            log.warning("decoder_malformed_observations", skipped=skipped, total=len(items))
        return detections


def _observation_to_detection(item: Any) -> Detection:
    if isinstance(item, Observation):
        return Detection(label=item.label, confidence=item.confidence, rect=item.rect)
    label, confidence, rect = item
    return Detection(label=str(label), confidence=float(confidence), rect=_coerce_rect(rect))


def _coerce_rect(rect: Rect | Sequence[float]) -> Rect:
    if isinstance(rect, Rect):
        return rect
    x1, y1, x2, y2 = (float(v) for v in rect)
    return Rect.clamped(x1, y1, x2, y2)
