"""YOLO inference engine — lazily loaded once, reused for every frame.

Two output modes:

* ``raw``: runs the underlying torch module on the resized frame and returns
  the dense ``[4 + C, N]`` prediction tensor as a numpy array, leaving
  thresholding and NMS to the narrator's own decoder and suppressor.
* ``observations``: runs ultralytics ``predict`` and returns per-object
  Observation triples with normalized corners.

A model that fails to load marks the engine UNAVAILABLE; it stays that way
(and returns no output) until ``reconfigure`` is called.
"""
from __future__ import annotations

import threading
from enum import Enum
from typing import Any

import cv2
import numpy as np
import torch
from ultralytics import YOLO

from assist_shared.events.schemas import Observation, Rect
from assist_shared.logging import get_logger

log = get_logger(__name__)


class Availability(str, Enum):
    UNLOADED = "unloaded"
    READY = "ready"
    UNAVAILABLE = "unavailable"


def detect_device() -> str:
    """Best available torch device: cuda, then mps, then cpu."""
    if torch.cuda.is_available():
        return "cuda"
    if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
        return "mps"
    return "cpu"


class InferenceEngine:
    """Owns the process-lifetime YOLO model.

    Args:
        model_path: Weights file (ultralytics auto-downloads known names).
        mode: "raw" or "observations".
        input_size: (width, height) the frame is resized to in raw mode.
        device: Torch device string; empty selects automatically.
        confidence: Score floor passed to ``predict`` in observations mode.
        iou: NMS IoU passed to ``predict`` in observations mode.
    """

    def __init__(
        self,
        model_path: str = "yolo11n.pt",
        mode: str = "raw",
        input_size: tuple[int, int] = (640, 640),
        device: str = "",
        confidence: float = 0.25,
        iou: float = 0.45,
    ) -> None:
        if mode not in ("raw", "observations"):
            raise ValueError(f"unknown inference mode {mode!r}")
        self._model_path = model_path
        self._mode = mode
        self._input_size = input_size
        self._device = device or detect_device()
        self._confidence = confidence
        self._iou = iou
        self._model: Any = None
        self._availability = Availability.UNLOADED
        self._load_lock = threading.Lock()

    @property
    def availability(self) -> Availability:
        return self._availability

    @property
    def available(self) -> bool:
        return self._availability is not Availability.UNAVAILABLE

    @property
    def mode(self) -> str:
        return self._mode

    def reconfigure(self, model_path: str | None = None, mode: str | None = None) -> None:
        """Drop the current model; the next ``infer`` loads again."""
        with self._load_lock:
            if model_path is not None:
                self._model_path = model_path
            if mode is not None:
                if mode not in ("raw", "observations"):
                    raise ValueError(f"unknown inference mode {mode!r}")
                self._mode = mode
            self._model = None
            self._availability = Availability.UNLOADED
        log.info("engine_reconfigured", model=self._model_path, mode=self._mode)

    def infer(self, frame: np.ndarray) -> np.ndarray | list[Observation] | None:
        """Run the model on one HxWx3 RGB frame.

        Returns None when the model is unavailable or this frame failed.
        """
        model = self._ensure_loaded()
        if model is None:
            return None
        try:
            if self._mode == "raw":
                return self._run_raw(model, frame)
            return self._run_predict(model, frame)
        except Exception as exc:
            log.error("engine_inference_error", error=str(exc), mode=self._mode)
            return None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_loaded(self) -> Any:
        if self._model is not None:
            return self._model
        if self._availability is Availability.UNAVAILABLE:
            return None
        with self._load_lock:
            if self._model is None and self._availability is Availability.UNLOADED:
                log.info("engine_loading", model=self._model_path, device=self._device)
                try:
                    model = YOLO(self._model_path)
                    model.model.to(self._device).eval()
                except Exception as exc:
                    self._availability = Availability.UNAVAILABLE
                    log.error("engine_load_failed", model=self._model_path, error=str(exc))
                    return None
                self._model = model
                self._availability = Availability.READY
                log.info("engine_ready", model=self._model_path, device=self._device)
        return self._model

    def _run_raw(self, model: Any, frame: np.ndarray) -> np.ndarray:
        width, height = self._input_size
        resized = cv2.resize(frame, (width, height), interpolation=cv2.INTER_LINEAR)
        batch = (
            torch.from_numpy(np.ascontiguousarray(resized))
            .permute(2, 0, 1)
            .float()
            .div(255.0)
            .unsqueeze(0)
            .to(self._device)
        )
        with torch.no_grad():
            out = model.model(batch)
        if isinstance(out, (list, tuple)):
            out = out[0]
        return out.detach().cpu().numpy()

    def _run_predict(self, model: Any, frame: np.ndarray) -> list[Observation]:
        results = model.predict(
            frame,
            conf=self._confidence,
            iou=self._iou,
            device=self._device,
            verbose=False,
        )
        observations: list[Observation] = []
        for result in results:
            if result.boxes is None or len(result.boxes) == 0:
                continue
            names = result.names
            boxes = result.boxes.xyxyn.cpu().numpy()
            confs = result.boxes.conf.cpu().numpy()
            classes = result.boxes.cls.cpu().numpy().astype(int)
            for (x1, y1, x2, y2), conf, cls in zip(boxes, confs, classes):
                observations.append(
                    Observation(
                        label=names.get(int(cls), f"class_{int(cls)}"),
                        confidence=min(1.0, float(conf)),
                        rect=Rect.clamped(x1, y1, x2, y2),
                    )
                )
        return observations
