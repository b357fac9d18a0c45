#!/usr/bin/env python3
"""Visualize narrator tracks on a video file.

Runs the full narration pipeline on every frame, draws each confirmed track's
smoothed box and label (faded by its fade weight) and prints announcements.
Time is driven by the video's own frame rate, not the wall clock, so the
result does not depend on how fast inference runs.

Usage:
    python scripts/visualize_video.py input.mp4 output_annotated.mp4

    # Or show live (requires display):
    python scripts/visualize_video.py input.mp4 --show

Dependencies: pip install -e .
"""
from __future__ import annotations

import argparse
import dataclasses
import sys
import time
from pathlib import Path

import cv2
import numpy as np

from assist_shared.clock import ManualClock
from assist_shared.events.schemas import TrackView
from assist_shared.logging import configure_logging
from assist_shared.settings import settings

from narrator.config import build_config
from narrator.main import build_pipeline
from narrator.speech import LogBackend, ThreadedSpeaker

_COLORS = [
    (0, 255, 255), (255, 0, 0), (0, 255, 0),
    (0, 0, 255), (255, 165, 0), (128, 0, 128),
]


def _color_for_label(label: str) -> tuple[int, int, int]:
    return _COLORS[sum(label.encode()) % len(_COLORS)]


def draw_track(frame: np.ndarray, track: TrackView) -> None:
    """Blend one track's box and caption into frame (in-place), opacity = fade weight."""
    h, w = frame.shape[:2]
    r = track.rect
    x1, y1 = int(r.x1 * w), int(r.y1 * h)
    x2, y2 = int(r.x2 * w), int(r.y2 * h)
    color = _color_for_label(track.label)

    overlay = frame.copy()
    cv2.rectangle(overlay, (x1, y1), (x2, y2), color, 2)
    cv2.putText(
        overlay, f"{track.label} {track.confidence:.2f}", (x1, max(12, y1 - 8)),
        cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2, cv2.LINE_AA
    )
    cv2.addWeighted(overlay, track.fade_weight, frame, 1.0 - track.fade_weight, 0, dst=frame)


def main() -> None:
    parser = argparse.ArgumentParser(description="Visualize narrator tracks on a video")
    parser.add_argument("input", help="Input video file path")
    parser.add_argument("output", nargs="?", help="Output annotated video path")
    parser.add_argument("--show", action="store_true", help="Display frames live")
    parser.add_argument("--model", default=settings.model_path, help="YOLO detection weights")
    parser.add_argument("--conf", type=float, default=settings.conf_threshold, help="Confidence threshold")
    args = parser.parse_args()

    configure_logging(settings.log_format, settings.log_level, service="visualize_video")

    if not Path(args.input).exists():
        print(f"Error: input file not found: {args.input}", file=sys.stderr)
        sys.exit(1)

    cap = cv2.VideoCapture(args.input)
    if not cap.isOpened():
        print(f"Error: cannot open video: {args.input}", file=sys.stderr)
        sys.exit(1)

    fps = cap.get(cv2.CAP_PROP_FPS) or 30
    width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
    height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
    total = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))

    config = build_config(settings)
    config = dataclasses.replace(
        config,
        model_path=args.model,
        decoder=dataclasses.replace(config.decoder, conf_threshold=args.conf),
    )
    clock = ManualClock()
    pipeline = build_pipeline(
        config,
        speech=ThreadedSpeaker(LogBackend(simulate_duration=False)),
        clock=clock,
    )

    writer = None
    if args.output:
        fourcc = cv2.VideoWriter_fourcc(*"mp4v")
        writer = cv2.VideoWriter(args.output, fourcc, fps, (width, height))

    print(f"Input:  {args.input} ({width}x{height} @ {fps:.1f} fps, {total} frames)")
    if args.output:
        print(f"Output: {args.output}")

    frame_idx = 0
    t_start = time.monotonic()

    try:
        while True:
            ok, frame = cap.read()  # BGR
            if not ok:
                break

            result = pipeline.process_frame(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
            if result is not None:
                for track in result.tracks:
                    draw_track(frame, track)
                if result.announcement is not None:
                    print(f"  [{clock.now():6.2f}s] {result.announcement.text}")

            if not pipeline.available:
                print("Error: inference model unavailable", file=sys.stderr)
                break

            elapsed = time.monotonic() - t_start
            proc_fps = (frame_idx + 1) / elapsed if elapsed > 0 else 0
            cv2.putText(
                frame,
                f"Frame {frame_idx} | {proc_fps:.1f} fps",
                (10, 28),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.8,
                (255, 255, 255),
                2,
                cv2.LINE_AA,
            )

            if writer:
                writer.write(frame)

            if args.show:
                cv2.imshow("Narrator", frame)
                if cv2.waitKey(1) & 0xFF == ord("q"):
                    break

            frame_idx += 1
            clock.advance(1.0 / fps)
            if frame_idx % 30 == 0:
                print(f"  {frame_idx}/{total} frames ({proc_fps:.1f} fps processing)")

    finally:
        cap.release()
        if writer:
            writer.release()
        if args.show:
            cv2.destroyAllWindows()

    elapsed = time.monotonic() - t_start
    print(f"\nDone. {frame_idx} frames in {elapsed:.1f}s ({frame_idx / max(elapsed, 1e-9):.1f} fps)")
    if args.output:
        print(f"Annotated video saved to: {args.output}")


if __name__ == "__main__":
    main()
