from typing import AsyncIterator

from llm.base import BaseLLM


class ClaudeProvider(BaseLLM):
    """Anthropic Claude provider."""

    name = "Claude"

    def _create_client(self):
        from anthropic import AsyncAnthropic
        return AsyncAnthropic(api_key=self.api_key)

    async def _stream(self, messages: list[dict]) -> AsyncIterator[str]:
        # Anthropic takes the system prompt as a separate argument
        system = [m["content"] for m in messages if m["role"] == "system"]
        turns = [m for m in messages if m["role"] != "system"]
        extra = {"system": "\n\n".join(system)} if system else {}

        async with self._client.messages.stream(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            messages=turns,
            **extra,
        ) as stream:
            async for text in stream.text_stream:
                yield text
