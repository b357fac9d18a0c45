"""Video capture — one reader thread feeding a single-slot frame buffer.

Reads frames from a file or RTSP stream via PyAV, downsamples to the target
FPS and publishes each RGB frame into a LatestFrame slot. A frame the
consumer has not taken yet is overwritten by the next one, so inference
always works on the newest image and nothing queues up behind a slow model.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass

import av
import numpy as np

from assist_shared.logging import get_logger

log = get_logger(__name__)

# Exponential backoff parameters for stream reconnection
_BACKOFF_BASE = 1.0
_BACKOFF_MAX = 30.0


@dataclass(frozen=True)
class CapturedFrame:
    image: np.ndarray  # HxWx3 uint8 RGB
    frame_seq: int
    timestamp: float  # monotonic seconds
    width: int
    height: int


class LatestFrame:
    """Holds at most one frame; ``put`` replaces, ``take`` empties."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._frame: CapturedFrame | None = None
        self.dropped = 0

    def put(self, frame: CapturedFrame) -> None:
        with self._cond:
            if self._frame is not None:
                self.dropped += 1
            self._frame = frame
            self._cond.notify()

    def take(self, timeout: float | None = None) -> CapturedFrame | None:
        with self._cond:
            if self._frame is None:
                self._cond.wait(timeout)
            frame, self._frame = self._frame, None
            return frame


def _is_rtsp(url: str) -> bool:
    return url.lower().startswith("rtsp://") or url.lower().startswith("rtsps://")


class FrameReader:
    """Reads frames from one source until ``stop_event`` is set.

    Args:
        source: File path or RTSP URL.
        slot: Destination for decoded frames.
        stop_event: Set this to request a graceful shutdown.
        target_fps: Frames per second forwarded to the slot.
        loop_file: Reopen a finished file instead of stopping.
    """

    def __init__(
        self,
        source: str,
        slot: LatestFrame,
        stop_event: threading.Event,
        target_fps: int = 15,
        loop_file: bool = False,
    ) -> None:
        self._source = source
        self._slot = slot
        self._stop = stop_event
        self._target_fps = target_fps
        self._loop_file = loop_file
        self._frame_seq = 0

    def run(self) -> None:
        """Main loop: reconnects on failure until stop_event is set."""
        backoff = _BACKOFF_BASE
        while not self._stop.is_set():
            try:
                self._stream_loop()
                backoff = _BACKOFF_BASE
                if not (_is_rtsp(self._source) or self._loop_file):
                    log.info("frame_reader_source_exhausted", source=self._source)
                    break
            except Exception as exc:
                if self._stop.is_set():
                    break
                log.warning(
                    "frame_reader_error",
                    source=self._source,
                    error=str(exc),
                    retry_in=backoff,
                )
                time.sleep(backoff)
                backoff = min(backoff * 2, _BACKOFF_MAX)

        log.info("frame_reader_stopped", source=self._source, dropped=self._slot.dropped)

    def _stream_loop(self) -> None:
        log.info("frame_reader_connecting", source=self._source)

        options = {}
        if _is_rtsp(self._source):
            options = {
                "rtsp_transport": "tcp",
                "fflags": "nobuffer",
                "flags": "low_delay",
            }

        container = av.open(self._source, options=options)
        try:
            video_stream = container.streams.video[0]
            video_stream.thread_type = "AUTO"

            src_fps = float(video_stream.average_rate or self._target_fps)
            frame_step = max(1, round(src_fps / self._target_fps))
            log.info(
                "frame_reader_connected",
                source=self._source,
                src_fps=src_fps,
                frame_step=frame_step,
            )

            raw_frame_idx = 0
            for packet in container.demux(video_stream):
                if self._stop.is_set():
                    break
                for frame in packet.decode():
                    if self._stop.is_set():
                        break
                    raw_frame_idx += 1
                    if raw_frame_idx % frame_step != 0:
                        continue
                    self._publish(frame)
        finally:
            container.close()

    def _publish(self, av_frame: av.VideoFrame) -> None:
        img: np.ndarray = av_frame.to_ndarray(format="rgb24")
        height, width = img.shape[:2]
        self._slot.put(
            CapturedFrame(
                image=img,
                frame_seq=self._frame_seq,
                timestamp=time.monotonic(),
                width=width,
                height=height,
            )
        )
        self._frame_seq += 1
