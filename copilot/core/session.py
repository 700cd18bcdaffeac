import asyncio
from typing import Optional

from loguru import logger

from analysis.client import AnalysisClient
from audio.capture import SpeechCaptureAdapter
from audio.output import SpeechOutputAdapter
from core import events as ev
from core.errors import AnalysisFailed, CaptureError
from core.machine import AssistantStateMachine
from core.state import OperationKind, Snapshot


class CopilotSession:
    """One user's assistant: the state machine plus the adapters it drives.

    User actions come in through the public methods; each one becomes an event
    on the machine or a call into an adapter whose callbacks feed the machine.
    """

    def __init__(
        self,
        machine: AssistantStateMachine,
        analysis: AnalysisClient,
        capture: Optional[SpeechCaptureAdapter] = None,
        output: Optional[SpeechOutputAdapter] = None,
    ):
        self.machine = machine
        self.analysis = analysis
        self.capture = capture
        self.output = output
        self._analysis_task: Optional[asyncio.Task] = None

        machine.on_analyze = self._start_analysis
        if output is not None:
            machine.on_speak = output.speak

    @property
    def snapshot(self) -> Snapshot:
        return self.machine.snapshot

    # --- User actions ---

    def input_changed(self, text: str) -> None:
        self.machine.dispatch(ev.InputChanged(text))

    def submit(self, text: Optional[str] = None) -> None:
        if text is None:
            text = self.machine.snapshot.input_text
        else:
            self.machine.dispatch(ev.InputChanged(text))
        self.machine.dispatch(ev.SubmitRequested(text))

    async def start_dictation(self) -> Optional[CaptureError]:
        if self.capture is None:
            return None
        if self.capture.active:
            # Second press while recording acts as stop
            await self.capture.stop()
            return None
        return await self.capture.start()

    async def stop_dictation(self) -> None:
        if self.capture is not None:
            await self.capture.stop()
        else:
            self.machine.dispatch(ev.DictationCancelled())

    def stop_speaking(self) -> None:
        if self.output is not None:
            self.output.stop()
        else:
            self.machine.dispatch(ev.SpeakingStopped())

    def click_mascot(self) -> None:
        self.machine.dispatch(ev.MascotClicked())

    # --- Analysis ---

    def _start_analysis(self, text: str) -> None:
        if self._analysis_task is not None and not self._analysis_task.done():
            self._analysis_task.cancel()
        token = self.machine.begin(OperationKind.ANALYSIS)
        self.machine.dispatch(ev.AnalysisStarted(token))
        self._analysis_task = asyncio.create_task(self._run_analysis(token, text))

    async def _run_analysis(self, token: int, text: str) -> None:
        try:
            result = await self.analysis.analyze(text)
        except AnalysisFailed as e:
            self.machine.dispatch(ev.AnalysisFailed(token, e.message))
        except Exception as e:
            logger.error("Analysis {} crashed: {}", token, e)
            self.machine.dispatch(ev.AnalysisFailed(token, str(e)))
        else:
            self.machine.dispatch(ev.AnalysisSucceeded(token, result))

    async def close(self) -> None:
        if self.capture is not None:
            await self.capture.stop()
        if self.output is not None:
            self.output.stop()
        if self._analysis_task is not None and not self._analysis_task.done():
            self._analysis_task.cancel()
        self.machine.close()
