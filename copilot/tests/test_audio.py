"""Tests for audio pipeline components."""
import threading

import numpy as np
import pytest
from audio.audio_capture import AudioCapture
from audio.audio_player import normalize_media_type
from audio.vad import VADDetector


class FakeCapture:
    """Yields pre-baked chunks; every chunk is 1280 samples (80ms)."""

    def __init__(self, pattern):
        self.pattern = list(pattern)
        self.reads = 0

    def read_chunk(self):
        self.reads += 1
        speech = self.pattern.pop(0) if self.pattern else False
        value = 1000 if speech else 0
        return np.full(1280, value, dtype=np.int16)


class FakeVADModel:
    def reset_states(self):
        pass


@pytest.fixture
def detector():
    vad = VADDetector(silence_duration=0.2, max_duration=1.0)
    vad._model = FakeVADModel()
    vad._ensure_model = lambda: None
    vad._is_speech = lambda window: bool(window.any())
    return vad


class TestVAD:
    @pytest.mark.asyncio
    async def test_utterance_ends_on_silence(self, detector):
        capture = FakeCapture([True, True, True] + [False] * 10)
        audio = await detector.capture_utterance(capture)
        assert audio is not None
        # Three speech chunks plus the trailing silence window
        assert 3 * 1280 < len(audio) < 13 * 1280

    @pytest.mark.asyncio
    async def test_no_speech_returns_none(self, detector):
        capture = FakeCapture([])
        audio = await detector.capture_utterance(capture, initial_wait=0.38)
        assert audio is None
        assert capture.reads == 5

    @pytest.mark.asyncio
    async def test_max_duration_caps_recording(self, detector):
        capture = FakeCapture([True] * 100)
        audio = await detector.capture_utterance(capture)
        assert len(audio) == capture.reads * 1280
        assert capture.reads == 13

    @pytest.mark.asyncio
    async def test_inference_runs_off_event_loop(self, detector):
        loop_thread = threading.get_ident()
        threads = []

        def is_speech(window):
            threads.append(threading.get_ident())
            return False

        detector._is_speech = is_speech
        await detector.capture_utterance(FakeCapture([]), initial_wait=0.08)
        assert len(threads) == 2
        assert loop_thread not in threads


class TestResample:
    def test_native_rate_untouched(self):
        capture = AudioCapture()
        chunk = np.arange(1280, dtype=np.int16)
        assert capture._resample(chunk) is chunk

    def test_downsample_to_chunk_size(self):
        capture = AudioCapture()
        capture._capture_rate = 48000
        chunk = np.arange(3840, dtype=np.int16)
        out = capture._resample(chunk)
        assert len(out) == 1280
        assert out.dtype == np.int16
        assert out[1] == 3


class TestMediaType:
    def test_parameters_stripped(self):
        assert normalize_media_type("Audio/MPEG; charset=binary") == "audio/mpeg"

    def test_missing(self):
        assert normalize_media_type(None) == ""
