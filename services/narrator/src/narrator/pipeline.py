"""Narration pipeline: frame → infer → decode → suppress → track → announce.

One pipeline per process. ``process_frame`` admits a single frame at a time;
a frame that arrives while another is still being processed is dropped.
The announcer sees the suppressed per-frame detections, not the tracker's
confirmed set. By default it is only consulted once something has been
confirmed, so a single-frame flicker is never spoken.
"""
from __future__ import annotations

import threading
from typing import Any, Protocol

import numpy as np

from assist_shared.clock import Clock, MonotonicClock
from assist_shared.events.schemas import FrameResult
from assist_shared.logging import get_logger

from narrator.announcer import Announcer
from narrator.decoder import Decoder
from narrator.suppressor import suppress
from narrator.tracker import Tracker

log = get_logger(__name__)


class FrameInference(Protocol):
    @property
    def available(self) -> bool:
        ...

    def infer(self, frame: np.ndarray) -> Any:
        ...


class NarrationPipeline:
    """Runs the post-processing chain for every processed frame.

    Args:
        decoder: Tensor / observation decoder.
        tracker: Cross-frame tracker (this pipeline is its only writer).
        announcer: Speech policy fed with the clean detections.
        engine: Inference engine; optional when outputs are fed directly.
        iou_threshold: NMS overlap threshold.
        class_aware_nms: Restrict suppression to boxes of the same label.
        announce_confirmed_only: Only consult the announcer on frames with at
            least one confirmed track.
        clock: Time source shared with the tracker and announcer.
        log_interval: Frames between throughput log lines.
    """

    def __init__(
        self,
        decoder: Decoder,
        tracker: Tracker,
        announcer: Announcer,
        engine: FrameInference | None = None,
        iou_threshold: float = 0.45,
        class_aware_nms: bool = False,
        announce_confirmed_only: bool = True,
        clock: Clock | None = None,
        log_interval: int = 100,
    ) -> None:
        self._decoder = decoder
        self._tracker = tracker
        self._announcer = announcer
        self._engine = engine
        self._iou = iou_threshold
        self._class_aware = class_aware_nms
        self._confirmed_only = announce_confirmed_only
        self._clock = clock or MonotonicClock()
        self._log_interval = log_interval
        self._busy = threading.Lock()
        self._frame_count = 0
        self._dropped = 0
        self._t_start = self._clock.now()

    @property
    def tracker(self) -> Tracker:
        return self._tracker

    @property
    def announcer(self) -> Announcer:
        return self._announcer

    @property
    def available(self) -> bool:
        return self._engine is not None and self._engine.available

    @property
    def dropped_frames(self) -> int:
        return self._dropped

    def process_frame(self, frame: np.ndarray) -> FrameResult | None:
        """Infer and post-process one frame; returns None if the frame was dropped."""
        if self._engine is None:
            raise RuntimeError("process_frame requires an inference engine")
        if not self._busy.acquire(blocking=False):
            self._dropped += 1
            log.debug("frame_dropped", reason="inference_in_flight", dropped=self._dropped)
            return None
        try:
            output = self._engine.infer(frame) if self._engine.available else None
            return self._post_process(output)
        finally:
            self._busy.release()

    def process_output(self, output: Any, now: float | None = None) -> FrameResult:
        """Post-process an inference output that was produced elsewhere."""
        with self._busy:
            return self._post_process(output, now)

    def _post_process(self, output: Any, now: float | None = None) -> FrameResult:
        if now is None:
            now = self._clock.now()

        raw = self._decoder.decode(output)
        clean = suppress(raw, self._iou, class_aware=self._class_aware)
        self._tracker.update(clean, now)
        tracks = self._tracker.confirmed(now)
        announcement = None
        if tracks or not self._confirmed_only:
            announcement = self._announcer.announce(clean, now)

        self._frame_count += 1
        if self._frame_count % self._log_interval == 0:
            elapsed = now - self._t_start
            fps = self._frame_count / elapsed if elapsed > 0 else 0
            log.info(
                "pipeline_throughput",
                frames=self._frame_count,
                fps=round(fps, 1),
                dropped=self._dropped,
                detections_this_frame=len(clean),
                tracks_this_frame=len(tracks),
            )

        return FrameResult(
            detections=tuple(clean),
            tracks=tracks,
            announcement=announcement,
        )
