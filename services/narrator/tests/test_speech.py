"""Unit tests for the speech backends (the TTS engine is faked)."""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from narrator import speech as speech_mod
from narrator.speech import (
    LogBackend,
    Pyttsx3Backend,
    make_backend,
    pick_voice,
    rate_to_wpm,
)

_VOICES = [
    SimpleNamespace(id="english-gb", name="English (Great Britain)", languages=[b"\x05en-gb"]),
    SimpleNamespace(id="english-us", name="English (America)", languages=[b"\x05en-us"]),
    SimpleNamespace(id="french", name="French", languages=[b"\x05fr-fr"]),
]


class FakeEngine:
    def __init__(self, voices=_VOICES) -> None:
        self.voices = voices
        self.properties: dict = {}
        self.said: list[str] = []
        self.run_count = 0

    def getProperty(self, name):
        assert name == "voices"
        return self.voices

    def setProperty(self, name, value) -> None:
        self.properties[name] = value

    def say(self, text) -> None:
        self.said.append(text)

    def runAndWait(self) -> None:
        self.run_count += 1


@pytest.fixture()
def fake_init(monkeypatch):
    engine = FakeEngine()
    init = MagicMock(return_value=engine)
    monkeypatch.setattr(speech_mod.pyttsx3, "init", init)
    return init


# ── Voice and rate mapping ────────────────────────────────────────────────────

def test_exact_locale_voice_is_preferred():
    assert pick_voice(_VOICES, "en-US") == "english-us"
    assert pick_voice(_VOICES, "en_GB") == "english-gb"


def test_language_only_match_is_a_fallback():
    assert pick_voice(_VOICES, "fr-CA") == "french"


def test_unknown_language_has_no_voice():
    assert pick_voice(_VOICES, "ja-JP") is None


def test_windows_style_voice_ids_match():
    voices = [SimpleNamespace(id=r"HKEY\Voices\TTS_MS_EN-US_ZIRA_11.0", name="Zira", languages=[])]
    assert pick_voice(voices, "en-US") == voices[0].id


def test_rate_maps_onto_words_per_minute():
    assert rate_to_wpm(0.0) == 80
    assert rate_to_wpm(0.5) == 175
    assert rate_to_wpm(1.0) == 270
    assert rate_to_wpm(3.0) == 270


# ── pyttsx3 backend ───────────────────────────────────────────────────────────

def test_pyttsx3_backend_speaks_with_voice_and_rate(fake_init):
    backend = Pyttsx3Backend()
    backend("I see a person", "en-US", 0.5)

    engine = fake_init.return_value
    assert engine.said == ["I see a person"]
    assert engine.run_count == 1
    assert engine.properties == {"voice": "english-us", "rate": 175}


def test_pyttsx3_engine_is_created_once(fake_init):
    backend = Pyttsx3Backend()
    backend("I see a dog", "en-US", 0.5)
    backend("I see a cat", "en-US", 0.8)

    fake_init.assert_called_once_with(None)
    engine = fake_init.return_value
    assert engine.said == ["I see a dog", "I see a cat"]
    assert engine.properties["rate"] == rate_to_wpm(0.8)


def test_missing_voice_keeps_engine_default(fake_init):
    Pyttsx3Backend()("I see a cup", "ja-JP", 0.5)
    assert "voice" not in fake_init.return_value.properties


def test_engine_init_failure_propagates(monkeypatch):
    monkeypatch.setattr(speech_mod.pyttsx3, "init", MagicMock(side_effect=RuntimeError("no espeak")))
    with pytest.raises(RuntimeError):
        Pyttsx3Backend()("I see a person", "en-US", 0.5)


# ── Backend selection ─────────────────────────────────────────────────────────

def test_make_backend_by_name():
    assert isinstance(make_backend("pyttsx3"), Pyttsx3Backend)
    assert isinstance(make_backend("log"), LogBackend)
    with pytest.raises(ValueError):
        make_backend("festival")
