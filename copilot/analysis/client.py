from typing import Optional

import httpx
from loguru import logger

from core.errors import AnalysisFailed
from core.state import AnalysisResult


class AnalysisClient:
    """Posts ingredient text to ``/api/analyze`` and normalizes the reply.

    No retries: a failed attempt is final, the user has to submit again.
    """

    def __init__(self, base_url: str, timeout: float = 60.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def analyze(self, ingredients: str) -> AnalysisResult:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.post("/api/analyze", json={"ingredients": ingredients})
        except httpx.HTTPError as e:
            logger.error("Analysis request failed: {}", e)
            raise AnalysisFailed(f"Analysis request failed: {e}") from e

        if not resp.is_success:
            logger.error("Analysis API error {}: {}", resp.status_code, resp.text[:200])
            raise AnalysisFailed(
                f"Analysis service returned {resp.status_code}", status_code=resp.status_code
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise AnalysisFailed("Analysis service returned invalid JSON") from e
        if not isinstance(data, dict):
            raise AnalysisFailed("Analysis service returned an unexpected body")

        return self._normalize(data)

    @staticmethod
    def _normalize(data: dict) -> AnalysisResult:
        text = data.get("text") or ""
        confidence = data.get("confidence")
        if not isinstance(confidence, (int, float)) or isinstance(confidence, bool):
            confidence = 1.0
        confidence = min(1.0, max(0.0, float(confidence)))
        result = AnalysisResult(
            text=str(text),
            confidence=confidence,
            is_uncertain=bool(data.get("isUncertain", False)),
        )
        logger.info(
            "Analysis received: {} chars, confidence={:.2f}, uncertain={}",
            len(result.text), result.confidence, result.is_uncertain,
        )
        return result
