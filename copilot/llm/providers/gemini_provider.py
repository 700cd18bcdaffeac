from typing import AsyncIterator

from llm.base import BaseLLM


class GeminiProvider(BaseLLM):
    """Google Gemini provider."""

    name = "Gemini"

    def _create_client(self):
        import google.generativeai as genai
        genai.configure(api_key=self.api_key)
        return genai.GenerativeModel(self.model)

    async def _stream(self, messages: list[dict]) -> AsyncIterator[str]:
        # Single prompt; system text is folded in ahead of the user turn
        prompt = "\n\n".join(m["content"] for m in messages)
        response = await self._client.generate_content_async(
            prompt,
            generation_config={
                "max_output_tokens": self.max_tokens,
                "temperature": self.temperature,
            },
            stream=True,
        )
        async for chunk in response:
            if chunk.text:
                yield chunk.text
