"""End-to-end tests for the narration pipeline with synthetic inference output."""
from __future__ import annotations

import numpy as np
import pytest

from assist_shared.clock import ManualClock
from assist_shared.events.schemas import TrackState
from narrator.announcer import Announcer, AnnouncerConfig
from narrator.decoder import Decoder, DecoderConfig
from narrator.pipeline import NarrationPipeline
from narrator.tracker import Tracker, TrackerConfig
from narrator.vocabulary import Vocabulary

_LABELS = ["person", "dog"]
_INPUT = 640


class RecordingSpeech:
    def __init__(self) -> None:
        self.texts: list[str] = []

    def speak(self, text, voice, rate, on_done) -> None:
        self.texts.append(text)
        on_done()


class FakeEngine:
    def __init__(self, outputs=None, available: bool = True) -> None:
        self._outputs = list(outputs or [])
        self.available = available
        self.calls = 0
        self.on_infer = None

    def infer(self, frame):
        self.calls += 1
        if self.on_infer is not None:
            self.on_infer()
        return self._outputs.pop(0) if self._outputs else None


def _person_tensor(cx: float, cy: float = 320, w: float = 160, h: float = 320, score: float = 0.8) -> np.ndarray:
    t = np.zeros((1, 4 + len(_LABELS), 1), dtype=np.float32)
    t[0, :4, 0] = (cx, cy, w, h)
    t[0, 4, 0] = score
    t[0, 5, 0] = 0.05
    return t


def _pipeline(clock: ManualClock, speech: RecordingSpeech, engine=None, **tracker_overrides) -> NarrationPipeline:
    tracker_cfg = TrackerConfig(**{"min_confirmation_frames": 3, **tracker_overrides})
    return NarrationPipeline(
        decoder=Decoder(Vocabulary(_LABELS), DecoderConfig(input_size=(_INPUT, _INPUT))),
        tracker=Tracker(tracker_cfg, clock),
        announcer=Announcer(speech, AnnouncerConfig(), clock),
        engine=engine,
        clock=clock,
    )


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def speech() -> RecordingSpeech:
    return RecordingSpeech()


# ── End to end ────────────────────────────────────────────────────────────────

def test_drifting_person_confirms_on_third_frame_and_is_announced_once(clock, speech):
    pipeline = _pipeline(clock, speech)

    states = []
    announced_on = []
    for frame_no in range(1, 6):
        result = pipeline.process_output(_person_tensor(cx=300 + 4 * frame_no))
        states.append([v.state for v in pipeline.tracker.snapshot().tracks])
        if result.announcement is not None:
            announced_on.append(frame_no)
        if frame_no < 3:
            assert result.tracks == ()
        else:
            assert len(result.tracks) == 1
            assert result.tracks[0].label == "person"
        clock.advance(0.1)

    assert states[0] == [TrackState.PROVISIONAL]
    assert states[1] == [TrackState.PROVISIONAL]
    assert all(s == [TrackState.CONFIRMED] for s in states[2:])
    assert announced_on == [3]
    assert speech.texts == ["I see a person"]


def test_track_identity_survives_drift(clock, speech):
    pipeline = _pipeline(clock, speech)
    ids = set()
    for frame_no in range(5):
        pipeline.process_output(_person_tensor(cx=300 + 4 * frame_no))
        ids.update(v.id for v in pipeline.tracker.snapshot().tracks)
        clock.advance(0.1)
    assert len(ids) == 1


def test_announcer_consulted_without_confirmation_when_gate_disabled(clock, speech):
    pipeline = NarrationPipeline(
        decoder=Decoder(Vocabulary(_LABELS), DecoderConfig()),
        tracker=Tracker(TrackerConfig(min_confirmation_frames=3), clock),
        announcer=Announcer(speech, AnnouncerConfig(), clock),
        announce_confirmed_only=False,
        clock=clock,
    )
    result = pipeline.process_output(_person_tensor(cx=320))
    assert result.tracks == ()
    assert result.announcement is not None


def test_duplicate_boxes_are_suppressed_before_tracking(clock, speech):
    pipeline = _pipeline(clock, speech, min_confirmation_frames=1)
    t = np.concatenate([_person_tensor(cx=320), _person_tensor(cx=324, score=0.7)], axis=2)
    result = pipeline.process_output(t)
    assert len(result.detections) == 1
    assert result.detections[0].confidence == pytest.approx(0.8, abs=1e-6)
    assert len(pipeline.tracker) == 1


def test_malformed_output_degrades_to_empty(clock, speech):
    pipeline = _pipeline(clock, speech)
    result = pipeline.process_output(np.zeros((1, 9, 4), dtype=np.float32))
    assert result.detections == ()
    assert result.tracks == ()
    assert result.announcement is None


def test_pipeline_recovers_on_next_good_frame(clock, speech):
    pipeline = _pipeline(clock, speech, min_confirmation_frames=1)
    pipeline.process_output(np.zeros((3, 3), dtype=np.float32))
    clock.advance(0.1)
    result = pipeline.process_output(_person_tensor(cx=320))
    assert len(result.tracks) == 1


def test_observation_lists_flow_through(clock, speech):
    pipeline = _pipeline(clock, speech, min_confirmation_frames=1)
    result = pipeline.process_output([("chair", 0.9, (0.2, 0.2, 0.5, 0.6))])
    assert [t.label for t in result.tracks] == ["chair"]
    assert result.announcement.text == "I see a chair"


# ── Frame handling ────────────────────────────────────────────────────────────

def test_process_frame_uses_engine(clock, speech):
    engine = FakeEngine(outputs=[_person_tensor(cx=320)])
    pipeline = _pipeline(clock, speech, engine=engine, min_confirmation_frames=1)
    result = pipeline.process_frame(np.zeros((480, 640, 3), dtype=np.uint8))
    assert engine.calls == 1
    assert len(result.tracks) == 1
    assert pipeline.available


def test_frame_arriving_during_inference_is_dropped(clock, speech):
    engine = FakeEngine(outputs=[_person_tensor(cx=320)])
    pipeline = _pipeline(clock, speech, engine=engine)
    frame = np.zeros((480, 640, 3), dtype=np.uint8)

    nested = []
    engine.on_infer = lambda: nested.append(pipeline.process_frame(frame))

    result = pipeline.process_frame(frame)
    assert result is not None
    assert nested == [None]
    assert pipeline.dropped_frames == 1
    assert engine.calls == 1


def test_unavailable_engine_yields_empty_frames_and_ages_tracks(clock, speech):
    engine = FakeEngine(outputs=[_person_tensor(cx=320)])
    pipeline = _pipeline(clock, speech, engine=engine, min_confirmation_frames=1, max_detection_age=0.5)
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    assert len(pipeline.process_frame(frame).tracks) == 1

    engine.available = False
    clock.advance(1.0)
    result = pipeline.process_frame(frame)
    assert not pipeline.available
    assert result.detections == ()
    assert result.tracks == ()
    assert len(pipeline.tracker) == 0
    assert engine.calls == 1


def test_process_frame_requires_engine(clock, speech):
    pipeline = _pipeline(clock, speech)
    with pytest.raises(RuntimeError):
        pipeline.process_frame(np.zeros((4, 4, 3), dtype=np.uint8))
