from pathlib import Path
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from core.config import ConfigManager
from core.session import CopilotSession
from llm.base import LLMRouter


def create_app(
    config_manager: ConfigManager,
    session: Optional[CopilotSession] = None,
    llm_router: Optional[LLMRouter] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``http_transport`` replaces the network for upstream calls (tests).
    """

    app = FastAPI(title="Pantry Copilot", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store references for route handlers
    app.state.config_manager = config_manager
    app.state.session = session
    app.state.llm_router = llm_router or LLMRouter(config_manager)
    app.state.http_transport = http_transport

    from api.routes.analyze import router as analyze_router
    from api.routes.speak import router as speak_router
    from api.routes.images import router as images_router
    from api.routes.session import router as session_router

    app.include_router(analyze_router, prefix="/api", tags=["analysis"])
    app.include_router(speak_router, prefix="/api", tags=["speech"])
    app.include_router(images_router, prefix="/api", tags=["images"])
    app.include_router(session_router, prefix="/api/session", tags=["session"])

    @app.get("/api/health")
    async def health():
        return {
            "status": "ok",
            "provider": config_manager.config.provider,
            "assistant_state": session.snapshot.state.value if session else None,
        }

    # Serve the mascot UI. Mounted last: "/" catches everything.
    static_dir = Path(__file__).resolve().parent.parent / "static"
    if static_dir.exists():
        app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="static")

    return app
