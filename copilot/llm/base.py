from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from loguru import logger

from core.config import ConfigManager
from core.errors import CopilotError
from llm.prompts import build_analysis_prompt


class LLMError(CopilotError):
    """A provider could not produce an answer."""


class BaseLLM(ABC):
    """Abstract base class for cloud LLM providers.

    Subclasses build the SDK client and stream raw tokens; this class checks
    the key and turns any SDK failure into ``LLMError``.
    """

    name = "LLM"

    def __init__(
        self,
        api_key: str,
        model: str = "",
        max_tokens: int = 900,
        temperature: float = 0.6,
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = None

    @abstractmethod
    def _create_client(self):
        ...

    @abstractmethod
    def _stream(self, messages: list[dict]) -> AsyncIterator[str]:
        ...

    async def stream(self, messages: list[dict]) -> AsyncIterator[str]:
        """Stream tokens from the LLM.

        Args:
            messages: List of message dicts with "role" and "content" keys.

        Yields:
            Token strings one at a time.

        Raises:
            LLMError: on missing key or provider failure.
        """
        if not self.api_key:
            logger.error("{} API key not configured.", self.name)
            raise LLMError(f"{self.name} API key not configured.")

        try:
            if self._client is None:
                self._client = self._create_client()
            async for token in self._stream(messages):
                yield token
        except Exception as e:
            logger.error("{} streaming error: {}", self.name, e)
            raise LLMError(f"{self.name} request failed: {e}") from e

    async def generate(self, messages: list[dict]) -> str:
        """Collect the streamed tokens into one string."""
        parts = []
        async for token in self.stream(messages):
            parts.append(token)
        return "".join(parts).strip()


class LLMRouter:
    """Routes analysis requests to the configured cloud provider."""

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager
        self._providers: dict[str, BaseLLM] = {}

    def get_provider(self, name: Optional[str] = None) -> BaseLLM:
        """Get or create a provider.

        Re-reads the API key each time so that key updates take effect
        without restart.
        """
        name = name or self.config_manager.config.provider
        current_key = self.config_manager.api_key(name)

        cached = self._providers.get(name)
        if cached is not None and cached.api_key == current_key:
            return cached

        llm = self.config_manager.config.llm
        if name == "gemini":
            from llm.providers.gemini_provider import GeminiProvider
            provider_cls, model = GeminiProvider, llm.gemini_model
        elif name == "openai":
            from llm.providers.openai_provider import OpenAIProvider
            provider_cls, model = OpenAIProvider, llm.openai_model
        elif name == "claude":
            from llm.providers.claude_provider import ClaudeProvider
            provider_cls, model = ClaudeProvider, llm.claude_model
        else:
            raise LLMError(f"Unknown LLM provider: {name}")

        self._providers[name] = provider_cls(
            api_key=current_key,
            model=model,
            max_tokens=llm.max_tokens,
            temperature=llm.temperature,
        )
        logger.info("LLM provider '{}' initialized ({}).", name, model)
        return self._providers[name]

    @staticmethod
    def build_messages(ingredients: str) -> list[dict]:
        return [{"role": "user", "content": build_analysis_prompt(ingredients)}]

    async def explain(self, ingredients: str) -> str:
        """Ask the active provider to explain an ingredient list."""
        provider = self.get_provider()
        logger.info("[LLM] Explaining {} chars of ingredients", len(ingredients))
        return await provider.generate(self.build_messages(ingredients))
