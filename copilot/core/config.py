import json
import os
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field


# Environment variables that can supply a key when the config leaves it blank
API_KEY_ENV_VARS = {
    "gemini": "GEMINI_API_KEY",
    "openai": "OPENAI_API_KEY",
    "claude": "ANTHROPIC_API_KEY",
    "elevenlabs": "ELEVENLABS_API_KEY",
}


class APIKeysConfig(BaseModel):
    gemini: str = ""
    openai: str = ""
    claude: str = ""
    elevenlabs: str = ""


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8080
    # Where the session's analysis and speech clients send their requests
    base_url: str = "http://127.0.0.1:8080"


class SpeechConfig(BaseModel):
    language: str = "en-US"
    voice_id: str = "ocZQ262SsZb9RIxcQBOj"  # ElevenLabs voice
    stability: float = 0.3
    similarity_boost: float = 0.7
    style: float = 0.8
    use_speaker_boost: bool = True
    recognition_model: str = "tiny"
    max_dictation_seconds: float = 15.0


class LLMConfig(BaseModel):
    gemini_model: str = "gemini-1.5-flash"
    openai_model: str = "gpt-4o-mini"
    claude_model: str = "claude-haiku-4-5-20251001"
    max_tokens: int = 900  # Room for a 15-20 sentence explanation
    temperature: float = 0.6


class TimingConfig(BaseModel):
    """Auto-reset and debounce windows, in seconds."""

    input_debounce: float = 0.5
    empty_submit_warning: float = 3.0
    analysis_failure_warning: float = 5.0
    speaking_fallback: float = 10.0
    laugh: float = 3.0


class AppConfig(BaseModel):
    provider: str = "gemini"  # "gemini", "openai", or "claude"
    confidence_threshold: float = 0.7
    api_keys: APIKeysConfig = Field(default_factory=APIKeysConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    speech: SpeechConfig = Field(default_factory=SpeechConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    timing: TimingConfig = Field(default_factory=TimingConfig)


class ConfigManager:
    """Loads and persists the application configuration as JSON."""

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        self.config_path = data_dir / "config.json"
        self._config: Optional[AppConfig] = None

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            self._config = self._load()
        return self._config

    def _load(self) -> AppConfig:
        """Load config from disk. Returns defaults if no config exists."""
        if self.config_path.exists():
            try:
                data = json.loads(self.config_path.read_text())
                logger.info("Configuration loaded from {}", self.config_path)
                return AppConfig(**data)
            except Exception as e:
                logger.error("Failed to load config: {}. Using defaults.", e)
        logger.info("No existing config found. Using defaults.")
        return AppConfig()

    def save(self) -> None:
        """Persist current config to disk."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(self.config.model_dump_json(indent=2))
        logger.debug("Configuration saved to {}", self.config_path)

    def update(self, **kwargs) -> AppConfig:
        """Update top-level config fields and save."""
        current = self.config.model_dump()
        for key, value in kwargs.items():
            if key in current:
                if isinstance(current[key], dict) and isinstance(value, dict):
                    current[key].update(value)
                else:
                    current[key] = value
        self._config = AppConfig(**current)
        self.save()
        return self._config

    def update_nested(self, section: str, **kwargs) -> AppConfig:
        """Update fields within a nested config section."""
        current = self.config.model_dump()
        if section in current and isinstance(current[section], dict):
            current[section].update(kwargs)
        self._config = AppConfig(**current)
        self.save()
        return self._config

    def reset(self) -> None:
        """Reset config to defaults."""
        self._config = AppConfig()
        if self.config_path.exists():
            self.config_path.unlink()
        logger.info("Configuration reset to defaults.")

    def api_key(self, name: str) -> str:
        """Key for a collaborator, falling back to its environment variable.

        Re-read on every call so key updates take effect without restart.
        """
        key = getattr(self.config.api_keys, name, "")
        if key:
            return key
        env_var = API_KEY_ENV_VARS.get(name)
        return os.environ.get(env_var, "") if env_var else ""

    @property
    def timing(self) -> TimingConfig:
        return self.config.timing
