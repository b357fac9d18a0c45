"""Narrator service configuration."""
from __future__ import annotations

from dataclasses import dataclass, field

from narrator.announcer import AnnouncerConfig
from narrator.decoder import DecoderConfig
from narrator.tracker import TrackerConfig


@dataclass(frozen=True)
class NarratorConfig:
    """Configuration for the narration pipeline."""

    # Model settings
    model_path: str = "yolo11n.pt"
    inference_mode: str = "raw"  # "raw" or "observations"
    device: str = ""  # "" = auto, "cpu", "cuda", "mps"
    vocabulary_path: str = ""

    # Post-processing
    decoder: DecoderConfig = field(default_factory=DecoderConfig)
    iou_threshold: float = 0.45
    class_aware_nms: bool = False
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    announcer: AnnouncerConfig = field(default_factory=AnnouncerConfig)
    announce_confirmed_only: bool = True
    speech_backend: str = "pyttsx3"  # "pyttsx3" or "log"

    # Capture settings
    video_source: str = ""
    loop_file: bool = False
    target_fps: int = 15

    # Throughput logging interval (frames)
    log_interval: int = 100


def build_config(settings) -> NarratorConfig:
    """Build NarratorConfig from shared Settings."""
    size = settings.model_input_size
    return NarratorConfig(
        model_path=settings.model_path,
        inference_mode=settings.inference_mode,
        device=settings.device,
        vocabulary_path=settings.vocabulary_path,
        decoder=DecoderConfig(
            conf_threshold=settings.conf_threshold,
            input_size=(size, size),
            min_box_fraction=settings.min_box_fraction,
            max_box_fraction=settings.max_box_fraction,
        ),
        iou_threshold=settings.iou_threshold,
        class_aware_nms=settings.class_aware_nms,
        tracker=TrackerConfig(
            match_iou_threshold=settings.match_iou_threshold,
            smoothing_factor=settings.smoothing_factor,
            min_confirmation_frames=settings.min_confirmation_frames,
            max_detection_age=settings.max_detection_age,
            fade_start_age=settings.fade_start_age,
            display_confidence=settings.display_confidence,
        ),
        announcer=AnnouncerConfig(
            min_confidence=settings.min_announce_confidence,
            min_interval=settings.min_announce_interval,
            voice=settings.speech_voice,
            rate=settings.speech_rate,
            enabled=settings.announcements_enabled,
        ),
        announce_confirmed_only=settings.announce_confirmed_only,
        speech_backend=settings.speech_backend,
        video_source=settings.video_source,
        loop_file=settings.loop_file,
        target_fps=settings.target_fps,
    )
