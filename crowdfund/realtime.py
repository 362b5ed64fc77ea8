"""Socket.IO room subscriptions for live campaign and user updates.

Campaign rooms are public. A ``user:<id>`` room carries private notifications,
so only that user (session cookie or Bearer token on the handshake) or an
admin may join it.
"""

from __future__ import annotations

import logging
import re

from flask_socketio import emit, join_room, leave_room

from crowdfund.errors import ApiError
from crowdfund.extensions import socketio
from crowdfund.security import current_account

log = logging.getLogger(__name__)

_ROOM_RE = re.compile(r"^(campaign|user):(\d+)$")


def _room_from(data) -> str:
    room = str((data or {}).get("room") or "").strip() if isinstance(data, dict) else ""
    return room if _ROOM_RE.match(room) else ""


def _may_join(room: str) -> bool:
    kind, raw_id = room.split(":", 1)
    if kind != "user":
        return True
    try:
        account = current_account()
    except ApiError:
        return False
    return account is not None and (account.is_admin or account.id == int(raw_id))


@socketio.on("join")
def on_join(data):
    room = _room_from(data)
    if not room:
        emit("error", {"message": "room must look like campaign:<id> or user:<id>"})
        return
    if not _may_join(room):
        log.warning("refused socket join to %s", room)
        emit("error", {"message": "Not allowed to join this room", "room": room})
        return
    join_room(room)
    emit("joined", {"room": room})


@socketio.on("leave")
def on_leave(data):
    room = _room_from(data)
    if room:
        leave_room(room)
        emit("left", {"room": room})
