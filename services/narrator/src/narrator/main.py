"""Narrator service entry point."""
from __future__ import annotations

import signal
import sys
import threading

from assist_shared.clock import Clock, MonotonicClock
from assist_shared.logging import configure_logging, get_logger
from assist_shared.settings import settings

from narrator.announcer import Announcer
from narrator.capture import FrameReader, LatestFrame
from narrator.config import NarratorConfig, build_config
from narrator.decoder import Decoder
from narrator.engine import InferenceEngine
from narrator.pipeline import NarrationPipeline
from narrator.speech import SpeechSynthesizer, ThreadedSpeaker, make_backend
from narrator.tracker import Tracker
from narrator.vocabulary import Vocabulary

log = get_logger(__name__)


def build_pipeline(
    config: NarratorConfig,
    speech: SpeechSynthesizer | None = None,
    clock: Clock | None = None,
) -> NarrationPipeline:
    """Wire engine, decoder, tracker and announcer from one config."""
    clock = clock or MonotonicClock()
    if config.vocabulary_path:
        vocabulary = Vocabulary.from_yaml(config.vocabulary_path)
    else:
        vocabulary = Vocabulary.default()

    if speech is None:
        speech = ThreadedSpeaker(make_backend(config.speech_backend))

    # Loaded lazily on the first frame and kept for the process lifetime
    engine = InferenceEngine(
        model_path=config.model_path,
        mode=config.inference_mode,
        input_size=config.decoder.input_size,
        device=config.device,
        confidence=config.decoder.conf_threshold,
        iou=config.iou_threshold,
    )
    return NarrationPipeline(
        decoder=Decoder(vocabulary, config.decoder),
        tracker=Tracker(config.tracker, clock),
        announcer=Announcer(speech, config.announcer, clock),
        engine=engine,
        iou_threshold=config.iou_threshold,
        class_aware_nms=config.class_aware_nms,
        announce_confirmed_only=config.announce_confirmed_only,
        clock=clock,
        log_interval=config.log_interval,
    )


def run() -> None:
    configure_logging(settings.log_format, settings.log_level)
    config = build_config(settings)

    if not config.video_source:
        log.error("no_video_source", message="set VIDEO_SOURCE to a file path or RTSP URL")
        sys.exit(1)

    log.info(
        "narrator_service_starting",
        source=config.video_source,
        model=config.model_path,
        mode=config.inference_mode,
        speech=config.speech_backend,
    )

    pipeline = build_pipeline(config)
    slot = LatestFrame()
    stop_event = threading.Event()

    def _handle_signal(sig, frame):
        log.info("shutdown_signal_received", signal=sig)
        stop_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    reader = FrameReader(
        config.video_source,
        slot,
        stop_event,
        target_fps=config.target_fps,
        loop_file=config.loop_file,
    )
    reader_thread = threading.Thread(target=reader.run, name="frame-reader", daemon=True)
    reader_thread.start()

    was_available = True
    while not stop_event.is_set():
        captured = slot.take(timeout=0.5)
        if captured is None:
            if not reader_thread.is_alive():
                break
            continue

        result = pipeline.process_frame(captured.image)
        if pipeline.available != was_available:
            was_available = pipeline.available
            log.warning("inference_availability_changed", available=was_available)
        if result is None:
            continue

        if result.tracks:
            log.debug(
                "confirmed_tracks",
                frame_seq=captured.frame_seq,
                tracks=[(t.label, round(t.confidence, 2), round(t.fade_weight, 2)) for t in result.tracks],
            )
        if result.announcement is not None:
            log.info("narration", frame_seq=captured.frame_seq, text=result.announcement.text)

    stop_event.set()
    reader_thread.join(timeout=5)
    log.info("narrator_service_stopped", dropped_frames=slot.dropped)


def main() -> None:
    run()


if __name__ == "__main__":
    main()
