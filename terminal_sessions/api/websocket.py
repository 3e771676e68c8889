import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter()

# Bounded so one slow client cannot grow memory without limit.
SUBSCRIBER_QUEUE_SIZE = 1024


@router.websocket("/ws/events")
async def session_events_ws(websocket: WebSocket, id: Optional[str] = None):
    """Stream session events; ``?id=`` narrows the stream to one session."""
    await websocket.accept()
    bus = websocket.app.state.manager.bus
    q = bus.subscribe(maxsize=SUBSCRIBER_QUEUE_SIZE)

    try:
        while True:
            event = await q.get()
            if id is not None and event.session_id != id:
                continue
            await websocket.send_json(event.to_dict())
    except WebSocketDisconnect:
        pass
    finally:
        bus.unsubscribe(q)
