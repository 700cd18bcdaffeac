"""Integration tests for the full pipeline (mocked components)."""
import asyncio

import pytest
from audio.capability import Capability
from audio.capture import SpeechCaptureAdapter
from audio.output import LocalSynthesis, SpeechOutputAdapter
from core.config import ConfigManager, TimingConfig
from core.errors import AnalysisFailed
from core.machine import AssistantStateMachine
from core.session import CopilotSession
from core.state import AnalysisResult, AssistantState, Generations, OperationKind


class TestGenerations:
    def test_tokens_are_unique(self):
        gens = Generations()
        a = gens.begin(OperationKind.ANALYSIS)
        b = gens.begin(OperationKind.PLAYBACK)
        assert a != b

    def test_newer_token_supersedes(self):
        gens = Generations()
        old = gens.begin(OperationKind.ANALYSIS)
        new = gens.begin(OperationKind.ANALYSIS)
        assert not gens.is_current(OperationKind.ANALYSIS, old)
        assert gens.is_current(OperationKind.ANALYSIS, new)

    def test_kinds_are_independent(self):
        gens = Generations()
        capture = gens.begin(OperationKind.CAPTURE)
        gens.begin(OperationKind.PLAYBACK)
        gens.invalidate(OperationKind.PLAYBACK)
        assert gens.is_current(OperationKind.CAPTURE, capture)
        assert not gens.in_flight(OperationKind.PLAYBACK)

    def test_retire_only_current(self):
        gens = Generations()
        old = gens.begin(OperationKind.ANALYSIS)
        new = gens.begin(OperationKind.ANALYSIS)
        gens.retire(OperationKind.ANALYSIS, old)
        assert gens.current(OperationKind.ANALYSIS) == new
        gens.retire(OperationKind.ANALYSIS, new)
        assert not gens.in_flight(OperationKind.ANALYSIS)


class TestConfigIntegration:
    def test_defaults(self, tmp_path):
        cm = ConfigManager(tmp_path)
        assert cm.config.provider == "gemini"
        assert cm.config.confidence_threshold == 0.7
        assert cm.timing.input_debounce == 0.5
        assert cm.timing.empty_submit_warning == 3.0
        assert cm.timing.analysis_failure_warning == 5.0
        assert cm.timing.speaking_fallback == 10.0
        assert cm.timing.laugh == 3.0

    def test_save_and_reload(self, tmp_path):
        cm = ConfigManager(tmp_path)
        cm.update(provider="claude")
        cm.update_nested("speech", language="es-ES")

        reloaded = ConfigManager(tmp_path)
        assert reloaded.config.provider == "claude"
        assert reloaded.config.speech.language == "es-ES"
        assert reloaded.config.speech.voice_id == "ocZQ262SsZb9RIxcQBOj"

    def test_reset(self, tmp_path):
        cm = ConfigManager(tmp_path)
        cm.update(provider="openai")
        cm.reset()
        assert cm.config.provider == "gemini"
        assert not (tmp_path / "config.json").exists()

    def test_corrupt_file_uses_defaults(self, tmp_path):
        (tmp_path / "config.json").write_text("{not json")
        assert ConfigManager(tmp_path).config.provider == "gemini"

    def test_api_key_falls_back_to_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-env")
        cm = ConfigManager(tmp_path)
        assert cm.api_key("claude") == "sk-env"

        cm.update_nested("api_keys", claude="sk-config")
        assert cm.api_key("claude") == "sk-config"

    def test_unknown_key_is_blank(self, tmp_path):
        assert ConfigManager(tmp_path).api_key("nobody") == ""


class FakeAnalysis:
    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.requests = []

    async def analyze(self, ingredients):
        self.requests.append(ingredients)
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class FakePlayer:
    def __init__(self, delay=0.02):
        self.delay = delay
        self.played = []

    @staticmethod
    def supports(media_type):
        return True

    async def play(self, audio, media_type="audio/wav"):
        self.played.append(audio)
        await asyncio.sleep(self.delay)

    def stop(self):
        pass


class FakeTTS:
    async def synthesize(self, text):
        return f"wav:{text}".encode()


class FakeEngine:
    async def recognize(self):
        await asyncio.sleep(0.01)
        return "peanuts"


def build(analysis, timing=None, engine=None):
    machine = AssistantStateMachine(timing=timing or TimingConfig(speaking_fallback=1.0))
    player = FakePlayer()
    output = SpeechOutputAdapter(
        machine, player=player, remote=None, local=LocalSynthesis(FakeTTS(), Capability.AVAILABLE)
    )
    capture = None
    if engine is not None:
        capture = SpeechCaptureAdapter(
            machine, engine, capability=Capability.AVAILABLE, probe=lambda: None
        )
    session = CopilotSession(machine, analysis, capture=capture, output=output)
    return session, player


class TestSession:
    @pytest.mark.asyncio
    async def test_submit_speak_and_return_to_idle(self):
        result = AnalysisResult("Fresh whole oats.", confidence=0.9)
        analysis = FakeAnalysis(result=result)
        session, player = build(analysis)
        states = []
        session.machine.subscribe(lambda snap: states.append(snap.state))

        session.submit("oats")
        await asyncio.sleep(0.1)

        assert analysis.requests == ["oats"]
        assert player.played == [b"wav:Fresh whole oats."]
        # First publish is the input change, still idle
        assert states == [
            AssistantState.IDLE,
            AssistantState.THINKING,
            AssistantState.SPEAKING,
            AssistantState.IDLE,
        ]
        assert session.snapshot.result == result
        await session.close()

    @pytest.mark.asyncio
    async def test_uncertain_answer_is_spoken_unsure(self):
        result = AnalysisResult("Could be jam.", confidence=0.9, is_uncertain=True)
        session, player = build(FakeAnalysis(result=result))
        session.submit("red paste")
        await asyncio.sleep(0.005)
        assert session.machine.state == AssistantState.UNSURE
        await asyncio.sleep(0.1)
        assert session.machine.state == AssistantState.IDLE
        await session.close()

    @pytest.mark.asyncio
    async def test_failure_warns_then_recovers(self):
        timing = TimingConfig(analysis_failure_warning=0.05)
        analysis = FakeAnalysis(error=AnalysisFailed("Analysis service returned 500", 500))
        session, player = build(analysis, timing=timing)

        session.submit("oats")
        await asyncio.sleep(0.02)
        assert session.machine.state == AssistantState.WARNING
        assert session.snapshot.error_message == "Something went wrong. Please try again."
        assert player.played == []

        await asyncio.sleep(0.08)
        assert session.machine.state == AssistantState.IDLE
        await session.close()

    @pytest.mark.asyncio
    async def test_resubmit_discards_first_answer(self):
        analysis = FakeAnalysis(result=AnalysisResult("Answer."), delay=0.03)
        session, player = build(analysis)

        session.submit("first")
        await asyncio.sleep(0.01)
        session.submit("second")
        await asyncio.sleep(0.15)

        assert analysis.requests == ["first", "second"]
        assert len(player.played) == 1
        assert session.machine.state == AssistantState.IDLE
        await session.close()

    @pytest.mark.asyncio
    async def test_dictation_fills_input_then_submit(self):
        result = AnalysisResult("Peanuts are legumes.")
        analysis = FakeAnalysis(result=result)
        session, player = build(analysis, engine=FakeEngine())

        assert await session.start_dictation() is None
        assert session.machine.state == AssistantState.LISTENING
        await asyncio.sleep(0.03)
        assert session.snapshot.input_text == "peanuts"

        session.submit()
        await asyncio.sleep(0.1)
        assert analysis.requests == ["peanuts"]
        assert session.machine.state == AssistantState.IDLE
        await session.close()

    @pytest.mark.asyncio
    async def test_second_press_stops_dictation(self):
        engine = FakeEngine()
        session, _ = build(FakeAnalysis(result=AnalysisResult("x")), engine=engine)
        await session.start_dictation()
        await session.start_dictation()
        assert session.machine.state == AssistantState.IDLE
        assert not session.capture.active
        await session.close()
