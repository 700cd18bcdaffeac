from typing import Optional

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel

from core.presentation import render
from core.session import CopilotSession

router = APIRouter()


class InputBody(BaseModel):
    text: str


class SubmitBody(BaseModel):
    text: Optional[str] = None


def _session(request: Request) -> CopilotSession:
    session = request.app.state.session
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Assistant session not running.",
        )
    return session


def _view(session: CopilotSession) -> dict:
    snapshot = session.snapshot
    return {**snapshot.to_dict(), "mascot": render(snapshot)}


@router.get("")
async def get_state(request: Request):
    """Current assistant snapshot, for the mascot UI to render."""
    return _view(_session(request))


@router.put("/input")
async def update_input(body: InputBody, request: Request):
    session = _session(request)
    session.input_changed(body.text)
    return _view(session)


@router.post("/submit")
async def submit(body: SubmitBody, request: Request):
    session = _session(request)
    session.submit(body.text)
    return _view(session)


@router.post("/dictation/start")
async def start_dictation(request: Request):
    session = _session(request)
    error = await session.start_dictation()
    view = _view(session)
    if error is not None:
        view["capture_error"] = error.kind.value
    return view


@router.post("/dictation/stop")
async def stop_dictation(request: Request):
    session = _session(request)
    await session.stop_dictation()
    return _view(session)


@router.post("/speech/stop")
async def stop_speaking(request: Request):
    session = _session(request)
    session.stop_speaking()
    return _view(session)


@router.post("/mascot/click")
async def click_mascot(request: Request):
    session = _session(request)
    session.click_mascot()
    return _view(session)
