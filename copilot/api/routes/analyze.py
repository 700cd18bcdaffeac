from fastapi import APIRouter, HTTPException, Request, status
from loguru import logger
from pydantic import BaseModel

from llm.base import LLMError
from llm.uncertainty import score_uncertainty

router = APIRouter()


class AnalyzeRequest(BaseModel):
    ingredients: str


@router.post("/analyze")
async def analyze(body: AnalyzeRequest, request: Request):
    """Explain an ingredient list and rate how sure the explanation sounds."""
    llm_router = request.app.state.llm_router

    try:
        text = await llm_router.explain(body.ingredients)
    except LLMError as e:
        logger.error("Analysis failed: {}", e.message)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Ingredient analysis is unavailable right now.",
        )

    score = score_uncertainty(text)
    return {
        "text": text,
        "confidence": score.confidence,
        "isUncertain": score.is_uncertain,
    }
