import logging
import signal
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse

from ..errors import CreationError, InactiveError, MultiplexerError, NotFoundError, SessionError
from ..manager import TerminalSessionManager

logger = logging.getLogger(__name__)

router = APIRouter()


def get_manager_dep(request: Request) -> TerminalSessionManager:
    return request.app.state.manager


def _http_error(exc: SessionError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(404, exc.message)
    if isinstance(exc, InactiveError):
        return HTTPException(409, exc.message)
    if isinstance(exc, (CreationError, MultiplexerError)):
        logger.error("%s: %s", exc.code, exc)
        return HTTPException(500, str(exc))
    return HTTPException(400, str(exc))


def _signal_from(value) -> int:
    if value is None:
        return signal.SIGTERM
    if isinstance(value, int):
        try:
            return signal.Signals(value)
        except ValueError:
            raise HTTPException(400, f"Unknown signal: {value}")
    name = str(value).upper()
    if not name.startswith("SIG"):
        name = "SIG" + name
    try:
        return signal.Signals[name]
    except KeyError:
        raise HTTPException(400, f"Unknown signal: {value}")


@router.get("/api/sessions")
async def list_sessions(mgr: TerminalSessionManager = Depends(get_manager_dep)):
    return {"ok": True, "data": mgr.get_all()}


@router.get("/api/sessions/stats")
async def session_stats(mgr: TerminalSessionManager = Depends(get_manager_dep)):
    return {"ok": True, "data": mgr.get_stats()}


@router.get("/api/sessions/{session_id}")
async def describe_session(session_id: str, mgr: TerminalSessionManager = Depends(get_manager_dep)):
    try:
        return {"ok": True, "data": mgr.describe(session_id)}
    except SessionError as exc:
        raise _http_error(exc)


@router.post("/api/sessions")
async def spawn_session(
    payload: dict = Body(...),
    mgr: TerminalSessionManager = Depends(get_manager_dep),
):
    try:
        record = await mgr.spawn(payload)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    except SessionError as exc:
        raise _http_error(exc)
    return {"ok": True, "data": record.to_payload()}


@router.post("/api/sessions/{session_id}/write")
async def write_session(
    session_id: str,
    payload: dict = Body(...),
    mgr: TerminalSessionManager = Depends(get_manager_dep),
):
    data = payload.get("data")
    if not isinstance(data, str):
        raise HTTPException(400, "data must be a string")
    try:
        await mgr.write(session_id, data)
    except SessionError as exc:
        raise _http_error(exc)
    except OSError as exc:
        raise HTTPException(500, f"Write failed: {exc}")
    return {"ok": True}


@router.post("/api/sessions/{session_id}/resize")
async def resize_session(
    session_id: str,
    payload: dict = Body(...),
    mgr: TerminalSessionManager = Depends(get_manager_dep),
):
    try:
        size = mgr.resize(session_id, payload.get("cols"), payload.get("rows"))
    except SessionError as exc:
        raise _http_error(exc)
    return {"ok": True, "data": size}


@router.post("/api/sessions/{session_id}/disconnect")
async def disconnect_session(session_id: str, mgr: TerminalSessionManager = Depends(get_manager_dep)):
    if not mgr.disconnect(session_id):
        raise HTTPException(404, "Session not found")
    return {"ok": True}


@router.post("/api/sessions/{session_id}/reconnect")
async def reconnect_session(session_id: str, mgr: TerminalSessionManager = Depends(get_manager_dep)):
    record = mgr.reconnect(session_id)
    return {"ok": True, "data": record.to_payload() if record else None, "reconnected": record is not None}


@router.post("/api/sessions/{session_id}/kill")
async def kill_session(
    session_id: str,
    payload: Optional[dict] = Body(None),
    mgr: TerminalSessionManager = Depends(get_manager_dep),
):
    payload = payload or {}
    sig = _signal_from(payload.get("signal"))
    await mgr.kill(session_id, sig, kill_tmux=bool(payload.get("kill_tmux", False)))
    return {"ok": True}


@router.get("/api/sessions/{session_id}/replay")
async def replay_transcript(session_id: str, request: Request):
    """Serve the recorded output of a session, if transcripts are enabled."""
    transcripts = getattr(request.app.state, "transcripts", None)
    if transcripts is None:
        raise HTTPException(404, "Transcripts are not enabled")
    content = await transcripts.read(session_id)
    return PlainTextResponse(content.decode("utf-8", errors="replace"))


@router.get("/api/tmux/sessions")
async def list_tmux_sessions(mgr: TerminalSessionManager = Depends(get_manager_dep)):
    sessions = await mgr.list_tmux_sessions()
    return {"ok": True, "data": [s.to_payload() for s in sessions]}


@router.delete("/api/tmux/sessions/{name}")
async def kill_tmux_session(name: str, mgr: TerminalSessionManager = Depends(get_manager_dep)):
    try:
        await mgr.kill_tmux_session(name)
    except SessionError as exc:
        raise _http_error(exc)
    return {"ok": True}
