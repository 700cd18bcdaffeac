import httpx
from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

router = APIRouter()

ELEVENLABS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"


class SpeakRequest(BaseModel):
    text: str


def _fallback(status_code: int, error: str) -> JSONResponse:
    """Tell the caller to use local synthesis instead of showing an error."""
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "useBrowserTTS": True},
    )


@router.post("/speak")
async def speak(body: SpeakRequest, request: Request):
    """Synthesize ``text`` with ElevenLabs and return MP3 audio."""
    config_manager = request.app.state.config_manager
    speech = config_manager.config.speech
    api_key = config_manager.api_key("elevenlabs")

    if not api_key:
        logger.warning("ElevenLabs API key not configured; asking for local synthesis.")
        return _fallback(status.HTTP_401_UNAUTHORIZED, "Text-to-speech API key not configured.")

    try:
        async with httpx.AsyncClient(
            timeout=30.0, transport=request.app.state.http_transport
        ) as client:
            upstream = await client.post(
                ELEVENLABS_URL.format(voice_id=speech.voice_id),
                headers={"xi-api-key": api_key, "Content-Type": "application/json"},
                json={
                    "text": body.text,
                    "voice_settings": {
                        "stability": speech.stability,
                        "similarity_boost": speech.similarity_boost,
                        "style": speech.style,
                        "use_speaker_boost": speech.use_speaker_boost,
                    },
                },
            )
    except httpx.HTTPError as e:
        logger.error("ElevenLabs request failed: {}", e)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"error": "Speech service unreachable. Please try again."},
        )

    if upstream.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN):
        logger.warning("ElevenLabs rejected the API key ({}).", upstream.status_code)
        return _fallback(upstream.status_code, "Text-to-speech permission denied.")

    if not upstream.is_success:
        logger.error("ElevenLabs error {}: {}", upstream.status_code, upstream.text[:200])
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"error": "Failed to generate speech. Please try again."},
        )

    return Response(content=upstream.content, media_type="audio/mpeg")
