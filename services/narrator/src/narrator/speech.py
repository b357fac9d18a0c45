"""Speech collaborator: speaks text asynchronously and signals completion.

The announcer only needs ``speak(text, voice, rate, on_done)``; ``on_done`` is
called exactly once per utterance, possibly from another thread.

Backends are blocking callables ``(text, voice, rate)``:

* ``pyttsx3``: speaks through the platform TTS engine (SAPI5, NSSpeech, eSpeak).
* ``log``: logs the utterance only. Used by tests and the offline renderer.
"""
from __future__ import annotations

import threading
import time
from typing import Any, Callable, Iterable, Protocol

import pyttsx3

from assist_shared.logging import get_logger

log = get_logger(__name__)

# Average conversational speech at rate 0.5 is ~150 words per minute
_WORDS_PER_SECOND_AT_HALF_RATE = 2.5

# pyttsx3 "rate" is words per minute; 0.0-1.0 maps linearly onto this band
_MIN_WPM = 80
_MAX_WPM = 270

_CONTROL_CHARS = "".join(map(chr, range(32)))

SpeechBackend = Callable[[str, str, float], None]


class SpeechSynthesizer(Protocol):
    def speak(self, text: str, voice: str, rate: float, on_done: Callable[[], None]) -> None:
        ...


def estimate_duration(text: str, rate: float) -> float:
    """Rough seconds needed to say ``text`` at ``rate`` (0.0 slow – 1.0 fast)."""
    words = max(1, len(text.split()))
    words_per_s = _WORDS_PER_SECOND_AT_HALF_RATE * (max(rate, 0.05) / 0.5)
    return words / words_per_s


def rate_to_wpm(rate: float) -> int:
    rate = min(1.0, max(0.0, rate))
    return int(round(_MIN_WPM + (_MAX_WPM - _MIN_WPM) * rate))


def _voice_tags(voice: Any) -> list[str]:
    tags = []
    for lang in getattr(voice, "languages", None) or []:
        if isinstance(lang, bytes):
            # eSpeak prefixes the tag with a priority byte, e.g. b"\x05en-us"
            lang = lang.decode("utf-8", "ignore").lstrip(_CONTROL_CHARS)
        tags.append(str(lang).lower().replace("_", "-"))
    tags.append(str(getattr(voice, "id", "")).lower().replace("_", "-"))
    tags.append(str(getattr(voice, "name", "")).lower())
    return tags


def pick_voice(voices: Iterable[Any], wanted: str) -> str | None:
    """Id of the installed voice that best matches a tag like ``en-US``.

    An exact tag match beats a language-only match; None if nothing matches.
    """
    wanted = wanted.lower().replace("_", "-")
    language = wanted.split("-")[0]
    best_id = None
    best_score = 0
    for voice in voices:
        tags = _voice_tags(voice)
        score = 0
        if any(wanted in tag for tag in tags):
            score = 2
        elif any(tag == language or tag.startswith(language + "-") for tag in tags):
            score = 1
        if score > best_score:
            best_id, best_score = voice.id, score
    return best_id


class LogBackend:
    """Backend that logs the utterance and blocks for its estimated duration."""

    def __init__(self, simulate_duration: bool = True) -> None:
        self._simulate = simulate_duration

    def __call__(self, text: str, voice: str, rate: float) -> None:
        log.info("speech_utterance", text=text, voice=voice, rate=rate)
        if self._simulate:
            time.sleep(estimate_duration(text, rate))


class Pyttsx3Backend:
    """Speaks through pyttsx3; the engine is created on the first utterance.

    Args:
        driver_name: pyttsx3 driver ("sapi5", "nsss", "espeak"); None = platform default.
    """

    def __init__(self, driver_name: str | None = None) -> None:
        self._driver_name = driver_name
        self._engine: Any = None
        self._voice_ids: dict[str, str | None] = {}
        self._lock = threading.Lock()

    def __call__(self, text: str, voice: str, rate: float) -> None:
        with self._lock:
            engine = self._ensure_engine()
            voice_id = self._resolve_voice(engine, voice)
            if voice_id is not None:
                engine.setProperty("voice", voice_id)
            engine.setProperty("rate", rate_to_wpm(rate))
            engine.say(text)
            engine.runAndWait()

    def _ensure_engine(self) -> Any:
        if self._engine is None:
            self._engine = pyttsx3.init(self._driver_name)
            log.info("speech_engine_ready", driver=self._driver_name or "default")
        return self._engine

    def _resolve_voice(self, engine: Any, voice: str) -> str | None:
        if voice not in self._voice_ids:
            voice_id = pick_voice(engine.getProperty("voices") or [], voice)
            if voice_id is None:
                log.warning("speech_voice_not_found", voice=voice)
            self._voice_ids[voice] = voice_id
        return self._voice_ids[voice]


def make_backend(name: str) -> SpeechBackend:
    if name == "pyttsx3":
        return Pyttsx3Backend()
    if name == "log":
        return LogBackend()
    raise ValueError(f"unknown speech backend {name!r}")


class ThreadedSpeaker:
    """Runs a blocking speech backend on a daemon thread per utterance.

    Completion is always signalled, even if the backend raises.
    """

    def __init__(self, backend: SpeechBackend | None = None) -> None:
        self._backend = backend or LogBackend()

    def speak(self, text: str, voice: str, rate: float, on_done: Callable[[], None]) -> None:
        thread = threading.Thread(
            target=self._run,
            args=(text, voice, rate, on_done),
            name="speech",
            daemon=True,
        )
        thread.start()

    def _run(self, text: str, voice: str, rate: float, on_done: Callable[[], None]) -> None:
        try:
            self._backend(text, voice, rate)
        except Exception as exc:
            log.error("speech_backend_error", error=str(exc), text=text)
        finally:
            on_done()
