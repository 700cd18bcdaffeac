import asyncio
from pathlib import Path

from loguru import logger

from core.config import ConfigManager
from core.session import CopilotSession

# Base directory for the copilot package
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"
MODELS_DIR = BASE_DIR / "models"


def build_session(config_manager: ConfigManager) -> CopilotSession:
    """Wire the state machine to the speech adapters and the analysis client.

    Voice engines are probed once here; a missing engine leaves the matching
    adapter in its unsupported mode rather than failing startup.
    """
    from analysis.client import AnalysisClient
    from audio.audio_player import AudioPlayer
    from audio.capability import Capability, recognition_capability, synthesis_capability
    from audio.capture import SpeechCaptureAdapter
    from audio.output import LocalSynthesis, RemoteSynthesis, SpeechOutputAdapter
    from audio.stt import WhisperRecognizer
    from audio.tts import TextToSpeech
    from core.machine import AssistantStateMachine

    config = config_manager.config
    base_url = config.server.base_url

    recognition = recognition_capability()
    synthesis = synthesis_capability()

    machine = AssistantStateMachine(
        timing=config_manager.timing,
        confidence_threshold=config.confidence_threshold,
        voice_input_supported=recognition != Capability.UNSUPPORTED,
    )

    engine = None
    if recognition != Capability.UNSUPPORTED:
        engine = WhisperRecognizer(
            model_dir=MODELS_DIR / "stt",
            model_name=config.speech.recognition_model,
            language=config.speech.language,
            max_duration=config.speech.max_dictation_seconds,
        )
    capture = SpeechCaptureAdapter(machine, engine, capability=recognition)

    tts = None
    if synthesis == Capability.AVAILABLE:
        tts = TextToSpeech(model_dir=MODELS_DIR / "tts", language=config.speech.language)
    output = SpeechOutputAdapter(
        machine,
        player=AudioPlayer(),
        remote=RemoteSynthesis(base_url),
        local=LocalSynthesis(tts, capability=synthesis),
    )

    logger.info(
        "Session ready. Recognition: {}, local synthesis: {}",
        recognition.value, synthesis.value,
    )
    return CopilotSession(machine, AnalysisClient(base_url), capture=capture, output=output)


class Orchestrator:
    """Boots the API server and the assistant session on one event loop."""

    def __init__(self):
        self.config_manager = ConfigManager(DATA_DIR)
        self.session: CopilotSession | None = None
        self._server = None

    async def start(self):
        logger.info("=== Pantry Copilot starting ===")
        self.session = build_session(self.config_manager)

        from api.server import create_app
        import uvicorn

        app = create_app(self.config_manager, self.session)
        server_config = self.config_manager.config.server
        self._server = uvicorn.Server(uvicorn.Config(
            app, host=server_config.host, port=server_config.port, log_level="warning"
        ))
        logger.info("API server listening on {}:{}", server_config.host, server_config.port)
        await self._server.serve()

    async def shutdown(self):
        logger.info("Shutting down...")
        if self.session is not None:
            await self.session.close()
        if self._server is not None:
            self._server.should_exit = True
        logger.info("Shutdown complete.")


def main():
    """Entry point."""
    import sys
    from loguru import logger as log

    log.remove()
    log.add(sys.stderr, level="INFO", format="{time:HH:mm:ss} | {level:<7} | {message}")
    log.add(DATA_DIR / "copilot.log", rotation="10 MB", retention="7 days", level="DEBUG")

    orchestrator = Orchestrator()

    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(orchestrator.start())
    except KeyboardInterrupt:
        loop.run_until_complete(orchestrator.shutdown())
    finally:
        loop.close()


if __name__ == "__main__":
    main()
