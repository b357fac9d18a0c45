"""Spoken narration policy.

Per call, in order:
  1. nothing while an utterance is still playing (never interrupt or queue)
  2. nothing within ``min_interval`` seconds of the last announcement
  3. keep detections with confidence >= ``min_confidence``
  4. announce only labels not in the previous announcement's visible set

Rule 4 is what keeps a person standing in frame from being re-announced every
two seconds: only newly visible labels are spoken.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Sequence

from assist_shared.clock import Clock, MonotonicClock
from assist_shared.events.schemas import Announcement, Detection
from assist_shared.logging import get_logger

from narrator.speech import SpeechSynthesizer

log = get_logger(__name__)


@dataclass(frozen=True)
class AnnouncerConfig:
    min_confidence: float = 0.60
    min_interval: float = 2.0  # seconds between announcements
    voice: str = "en-US"
    rate: float = 0.5
    enabled: bool = True


@dataclass
class AnnouncementState:
    last_spoken_labels: frozenset[str] = frozenset()
    last_spoken_at: float = float("-inf")
    # Cleared from the speech thread; Event makes the flip visible to the caller.
    _speaking: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def speaking(self) -> bool:
        return self._speaking.is_set()


def compose_phrase(labels: Sequence[str]) -> str:
    """Build the spoken sentence for labels already ordered by priority."""
    if not labels:
        return ""
    if len(labels) == 1:
        return f"I see a {labels[0]}"
    if len(labels) == 2:
        return f"I see a {labels[0]} and a {labels[1]}"
    remaining = len(labels) - 2
    noun = "object" if remaining == 1 else "objects"
    return f"I see a {labels[0]}, a {labels[1]}, and {remaining} more {noun}"


class Announcer:
    """Decides whether and what to say about the current frame.

    Args:
        speech: Asynchronous speech collaborator.
        config: Confidence floor, spacing and voice settings.
        clock: Time source used when ``now`` is not passed explicitly.
    """

    def __init__(
        self,
        speech: SpeechSynthesizer,
        config: AnnouncerConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._speech = speech
        self._cfg = config or AnnouncerConfig()
        self._clock = clock or MonotonicClock()
        self._state = AnnouncementState()
        self.enabled = self._cfg.enabled

    @property
    def state(self) -> AnnouncementState:
        return self._state

    @property
    def speaking(self) -> bool:
        return self._state.speaking

    def announce(
        self, detections: Sequence[Detection], now: float | None = None
    ) -> Announcement | None:
        """Speak about newly visible objects; returns the announcement if one started."""
        if not self.enabled or self._state.speaking:
            return None

        if now is None:
            now = self._clock.now()
        if now - self._state.last_spoken_at < self._cfg.min_interval:
            return None

        best: dict[str, float] = {}
        for det in detections:
            if det.confidence < self._cfg.min_confidence:
                continue
            if det.confidence > best.get(det.label, -1.0):
                best[det.label] = det.confidence
        if not best:
            return None

        current = frozenset(best)
        new_labels = current - self._state.last_spoken_labels
        if not new_labels:
            log.debug("announcement_skipped", reason="no_new_labels", visible=sorted(current))
            return None

        ranked = sorted(new_labels, key=lambda label: (-best[label], label))
        text = compose_phrase(ranked)

        # Flag first: the completion callback may fire before speak() returns.
        self._state._speaking.set()
        try:
            self._speech.speak(text, self._cfg.voice, self._cfg.rate, self._on_speech_done)
        except Exception as exc:
            log.error("speech_start_failed", error=str(exc), text=text)
            self._state._speaking.clear()

        self._state.last_spoken_labels = current
        self._state.last_spoken_at = now

        log.info("announcement_spoken", text=text, new_labels=ranked, visible=len(current))
        return Announcement(text=text, labels=tuple(ranked), spoken_at=now)

    def clear_history(self) -> None:
        """Forget what was said so the next call announces everything visible."""
        self._state.last_spoken_labels = frozenset()
        self._state.last_spoken_at = float("-inf")

    def _on_speech_done(self) -> None:
        self._state._speaking.clear()
        log.debug("speech_finished")
