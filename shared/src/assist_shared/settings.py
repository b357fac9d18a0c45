from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Inference
    model_path: str = Field(default="yolo11n.pt", description="ultralytics weights file")
    model_input_size: int = Field(default=640, gt=0, description="Square model input side (px)")
    inference_mode: str = Field(default="raw", pattern="^(raw|observations)$")
    device: str = Field(default="", description="Torch device; empty = auto-detect")
    vocabulary_path: str = Field(default="", description="YAML label list; empty = COCO")

    # Decoder
    conf_threshold: float = Field(default=0.25, ge=0.0, le=1.0)
    min_box_fraction: float = Field(default=0.02, ge=0.0, le=1.0)
    max_box_fraction: float = Field(default=0.95, ge=0.0, le=1.0)

    # Suppressor
    iou_threshold: float = Field(default=0.45, ge=0.0, le=1.0)
    class_aware_nms: bool = Field(default=False)

    # Tracker
    match_iou_threshold: float = Field(default=0.4, ge=0.0, le=1.0)
    min_confirmation_frames: int = Field(default=2, ge=1)
    max_detection_age: float = Field(default=0.5, gt=0.0, description="Seconds")
    fade_start_age: float = Field(default=0.25, ge=0.0, description="Seconds")
    smoothing_factor: float = Field(default=0.3, gt=0.0, le=1.0)
    display_confidence: float = Field(default=0.5, ge=0.0, le=1.0)

    # Announcer
    min_announce_confidence: float = Field(default=0.60, ge=0.0, le=1.0)
    min_announce_interval: float = Field(default=2.0, ge=0.0, description="Seconds")
    announcements_enabled: bool = Field(default=True)
    announce_confirmed_only: bool = Field(default=True)
    speech_voice: str = Field(default="en-US")
    speech_rate: float = Field(default=0.5, gt=0.0, le=1.0)
    speech_backend: str = Field(default="pyttsx3", pattern="^(pyttsx3|log)$")

    # Capture
    video_source: str = Field(default="", description="Video file path or RTSP URL")
    loop_file: bool = Field(default=False, description="Replay a file source when it ends")
    target_fps: int = Field(default=15, gt=0)

    # Logging
    log_format: str = Field(default="console")
    log_level: str = Field(default="INFO")

    @model_validator(mode="after")
    def _check_bands(self) -> "Settings":
        if self.fade_start_age > self.max_detection_age:
            raise ValueError("fade_start_age must not exceed max_detection_age")
        if self.min_box_fraction > self.max_box_fraction:
            raise ValueError("min_box_fraction must not exceed max_box_fraction")
        return self


# Module-level singleton, import and use directly
settings = Settings()
