"""
WebSocket endpoint for real-time sprint updates.

Clients connect to `/ws?token=...`, are placed in their own user room and
may then join project and sprint rooms they have access to:

    {"type": "joinProject", "projectId": "..."}
    {"type": "leaveProject", "projectId": "..."}
    {"type": "joinSprint", "sprintId": "..."}
    {"type": "leaveSprint", "sprintId": "..."}
    {"type": "ping"}
"""

import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
import structlog

from sprintsync.infrastructure.broadcast import project_room, sprint_room, user_room
from sprintsync.infrastructure.exceptions import SprintSyncError, UnauthorizedError

router = APIRouter(tags=["websocket"])
logger = structlog.get_logger()

# message type -> (id field, join?, room builder)
_ROOM_MESSAGES = {
    "joinProject": ("projectId", True, project_room),
    "leaveProject": ("projectId", False, project_room),
    "joinSprint": ("sprintId", True, sprint_room),
    "leaveSprint": ("sprintId", False, sprint_room),
}


async def _reply_rooms(websocket: WebSocket, broadcast, kind: str, room: str) -> None:
    """Acknowledge a join/leave with the rooms the connection is now in."""
    rooms = await broadcast.rooms_of(websocket)
    await websocket.send_json({"type": kind, "room": room, "rooms": sorted(rooms)})


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Authenticated room subscriptions for change events."""
    container = websocket.app.state.container
    try:
        user_id = await container.authenticator.authenticate(websocket.query_params.get("token", ""))
    except UnauthorizedError:
        logger.warning("websocket_auth_rejected")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    broadcast = container.broadcast
    await broadcast.join(websocket, user_room(user_id))
    logger.info("websocket_connected", user_id=user_id)

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "error": "Invalid JSON format"})
                continue
            if not isinstance(message, dict):
                await websocket.send_json({"type": "error", "error": "Message must be a JSON object"})
                continue

            kind = message.get("type")
            if kind == "ping":
                await websocket.send_json({"type": "pong"})
                continue
            if kind not in _ROOM_MESSAGES:
                await websocket.send_json({"type": "error", "error": f"Unknown message type: {kind}"})
                continue

            field, joining, room_for = _ROOM_MESSAGES[kind]
            target = message.get(field)
            if not isinstance(target, str) or not target:
                await websocket.send_json({"type": "error", "error": f"{kind} requires {field}"})
                continue

            room = room_for(target)
            if not joining:
                await broadcast.leave(websocket, room)
                await _reply_rooms(websocket, broadcast, "left", room)
                continue

            try:
                if kind == "joinProject":
                    await container.projects.get_project(target, user_id)
                else:
                    await container.sprints.get_sprint(target, user_id)
            except SprintSyncError as e:
                await websocket.send_json({"type": "error", "error": e.message, "room": room})
                continue

            await broadcast.join(websocket, room)
            logger.info("websocket_room_joined", user_id=user_id, room=room)
            await _reply_rooms(websocket, broadcast, "joined", room)

    except WebSocketDisconnect:
        logger.debug("websocket_disconnected", user_id=user_id)
    finally:
        await broadcast.disconnect(websocket)
