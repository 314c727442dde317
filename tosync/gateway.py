"""
WebSocket session gateway

Accepts client connections, parses their messages, applies them to the
right room under that room's lock and fans the resulting events out.

Each connection has an outbound queue drained by its own writer task, so
delivering events never waits on a socket while a room lock is held.
"""
import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

from aiohttp import WSCloseCode, WSMsgType, web

from . import protocol
from .auth import verify_admin_token
from .config import Settings
from .errors import (
    DuplicateAction, NotAuthorized, NotInRoom, RoomNotFound, Timeout, TosyncError
)
from .room import ADMIN, Outbound, RoomSession
from .state import ConnectionRegistry, RoomStore
from .utils import generate_connection_id, normalize_room_code

logger = logging.getLogger("tosync.gateway")

KICKED_CLOSE_CODE = 4001

# Failure event names for messages that do not use the generic "error"
ERROR_EVENTS = {
    "transfer-admin": "transfer-admin-error",
    "kick-user": "kick-user-error",
}


class _Close:
    def __init__(self, code: int, message: bytes):
        self.code = code
        self.message = message


class Connection:
    """One live WebSocket and its outbound queue"""

    def __init__(self, ws: web.WebSocketResponse, connection_id: str):
        self.ws = ws
        self.id = connection_id
        self.queue: asyncio.Queue = asyncio.Queue()
        self.last_video_action: Optional[float] = None
        self.writer: Optional[asyncio.Task] = None
        self.access_token: Optional[str] = None

    def __repr__(self) -> str:
        return f"<Connection {self.id}>"

    def send(self, frame):
        self.queue.put_nowait(frame)

    def close_after_flush(self, code: int, message: bytes):
        self.queue.put_nowait(_Close(code, message))

    async def stop_writer(self, timeout: float = 5.0):
        if self.writer is None or self.writer.done():
            return
        self.queue.put_nowait(None)
        try:
            await asyncio.wait_for(self.writer, timeout)
        except asyncio.TimeoutError:
            logger.debug(f"Writer for {self.id} did not stop in time")

    async def run_writer(self):
        while True:
            item = await self.queue.get()
            if item is None:
                return
            if isinstance(item, _Close):
                await self.ws.close(code=item.code, message=item.message)
                return
            if self.ws.closed:
                return
            try:
                if isinstance(item, str):
                    await self.ws.send_str(item)
                else:
                    await self.ws.send_json(item)
            except ConnectionResetError as e:
                logger.debug(f"Failed to send to {self.id}: {e}")
                return


def error_frame(msg_type: Optional[str], error: TosyncError) -> dict:
    if isinstance(error, RoomNotFound) and msg_type in ("join-room", "validate-room"):
        return {"type": "room-not-found", "data": error.to_dict()}
    return {"type": ERROR_EVENTS.get(msg_type, "error"), "data": error.to_dict()}


class SessionGateway:
    """Dispatches client messages to rooms; one instance per application"""

    def __init__(
        self,
        store: RoomStore,
        registry: ConnectionRegistry,
        settings: Settings,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.registry = registry
        self.settings = settings
        self.monotonic = monotonic
        self.connections: Dict[str, Connection] = {}

        self._handlers = {
            "join-room": self.on_join_room,
            "validate-room": self.on_validate_room,
            "video-action": self.on_video_action,
            "media-action": self.on_media_action,
            "force-sync": self.on_force_sync,
            "transfer-admin": self.on_transfer_admin,
            "kick-user": self.on_kick_user,
            "subtitle-upload": self.on_subtitle_upload,
            "subtitle-select": self.on_subtitle_select,
            "torrent-status": self.on_torrent_status,
        }

    # ============================================================
    # TRANSPORT
    # ============================================================

    async def handle(self, request: web.Request) -> web.WebSocketResponse:
        """aiohttp handler for GET /ws"""
        ws = web.WebSocketResponse(heartbeat=25.0)
        await ws.prepare(request)

        conn = Connection(ws, generate_connection_id())
        conn.access_token = self.registry.issue_token(conn.id)
        conn.writer = asyncio.create_task(conn.run_writer())
        self.connections[conn.id] = conn
        logger.info(f"📡 WebSocket client connected: {conn.id} (total: {len(self.connections)})")

        conn.send({"type": "connected", "data": {"connectionId": conn.id, "accessToken": conn.access_token}})

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    # Plain-text keepalive
                    if msg.data == "ping":
                        conn.send("pong")
                    else:
                        await self.dispatch(conn, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.debug(f"WebSocket error on {conn.id}: {ws.exception()}")
        finally:
            await self.disconnect(conn)

        return ws

    async def disconnect(self, conn: Connection):
        self.connections.pop(conn.id, None)
        self.registry.revoke_token(conn.access_token)
        try:
            await self.leave_current_room(conn)
        finally:
            await conn.stop_writer()
        logger.info(f"📡 WebSocket client disconnected: {conn.id} (remaining: {len(self.connections)})")

    async def shutdown(self):
        for conn in list(self.connections.values()):
            await conn.ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")

    def deliver(self, room: RoomSession, events: List[Outbound]):
        """Enqueue events for their recipients; call with the room lock held"""
        for event in events:
            frame = event.frame()
            if event.to is not None:
                targets = [event.to]
            else:
                targets = [cid for cid in room.members if cid not in event.exclude]
            for connection_id in targets:
                conn = self.connections.get(connection_id)
                if conn is not None:
                    conn.send(frame)

    # ============================================================
    # DISPATCH
    # ============================================================

    async def dispatch(self, conn: Connection, raw: str):
        msg_type = None
        try:
            msg_type, data = protocol.parse_frame(raw)
            await self._handlers[msg_type](conn, data)
        except DuplicateAction:
            logger.debug(f"Suppressed duplicate {msg_type} from {conn.id}")
        except TosyncError as e:
            logger.debug(f"{msg_type} from {conn.id} rejected: {e.code} ({e.message})")
            conn.send(error_frame(msg_type, e))
        except Exception:
            logger.exception(f"Error handling {msg_type} from {conn.id}")
            conn.send({"type": ERROR_EVENTS.get(msg_type, "error"),
                       "data": {"code": "InternalError", "message": "Failed to process request"}})

    async def in_room(self, conn: Connection, operation) -> RoomSession:
        """Run `operation(room)` on the connection's room under its lock and deliver the result"""
        code = self.registry.room_of(conn.id)
        if code is None:
            raise NotInRoom()
        try:
            room = await self.store.get(code)
        except RoomNotFound:
            raise NotInRoom()

        async with room.lock:
            if room.evicted or conn.id not in room.members:
                raise NotInRoom()
            self.deliver(room, operation(room))
        return room

    async def leave_current_room(self, conn: Connection):
        code = self.registry.unbind(conn.id)
        if code is None:
            return
        try:
            room = await self.store.get(code)
        except RoomNotFound:
            return
        async with room.lock:
            self.deliver(room, room.leave(conn.id))

    # ============================================================
    # HANDLERS
    # ============================================================

    async def on_join_room(self, conn: Connection, data: dict):
        req = protocol.parse_join(data)
        code = normalize_room_code(req.room_code, self.settings.room_code_length)

        create = req.is_creator and req.role == ADMIN
        login_missing = False
        if create and self.settings.creation_requires_login:
            if verify_admin_token(req.admin_token, self.settings.secret_key) is None:
                create = False
                login_missing = True

        # A connection is a member of at most one room; the old one is only
        # left once the new room is known to exist
        left_previous = False
        while True:
            try:
                room = await self.store.get_or_create(code, create)
            except RoomNotFound:
                if login_missing:
                    raise NotAuthorized("Log in to create rooms")
                raise

            if not left_previous:
                await self.leave_current_room(conn)
                left_previous = True

            async with room.lock:
                if room.evicted:
                    # Lost a race with the reaper; the next lookup creates a fresh room
                    continue
                events = room.join(conn.id, req.name, req.role, is_creator=create)
                self.registry.bind(conn.id, code)
                self.deliver(room, events)
                return

    async def on_validate_room(self, conn: Connection, data: dict):
        code = normalize_room_code(protocol.parse_room_code(data), self.settings.room_code_length)
        try:
            room = await asyncio.wait_for(self.store.get(code), self.settings.validate_timeout)
        except asyncio.TimeoutError:
            raise Timeout("Room lookup timed out")
        conn.send({"type": "room-exists", "data": {"roomCode": code, "userCount": len(room.members)}})

    async def on_video_action(self, conn: Connection, data: dict):
        action, position, rate = protocol.parse_video_action(data)

        now = self.monotonic()
        if (conn.last_video_action is not None
                and now - conn.last_video_action < self.settings.sync_throttle):
            logger.debug(f"Throttled {action} from {conn.id}")
            return

        await self.in_room(conn, lambda room: room.apply_video_action(conn.id, action, position, rate))
        conn.last_video_action = now

    async def on_media_action(self, conn: Connection, data: dict):
        action, media = protocol.parse_media_action(data)
        await self.in_room(conn, lambda room: room.apply_media_action(conn.id, action, media))

    async def on_force_sync(self, conn: Connection, data: dict):
        position, playing = protocol.parse_force_sync(data)
        await self.in_room(conn, lambda room: room.force_sync(conn.id, position, playing))

    async def on_transfer_admin(self, conn: Connection, data: dict):
        target_name = protocol.parse_target_name(data)
        await self.in_room(conn, lambda room: room.transfer_admin(conn.id, target_name))

    async def on_kick_user(self, conn: Connection, data: dict):
        target_name = protocol.parse_target_name(data)
        kicked = []

        def kick(room: RoomSession):
            target, events = room.kick(conn.id, target_name)
            # Room state first, so the target's disconnect finds nothing to leave
            self.registry.unbind(target.connection_id)
            kicked.append(target.connection_id)
            return events

        await self.in_room(conn, kick)

        target_conn = self.connections.get(kicked[0])
        if target_conn is not None:
            target_conn.close_after_flush(KICKED_CLOSE_CODE, b"kicked")

    async def on_subtitle_upload(self, conn: Connection, data: dict):
        subtitle = protocol.parse_subtitle(data)
        await self.in_room(conn, lambda room: room.add_subtitle(conn.id, subtitle))

    async def on_subtitle_select(self, conn: Connection, data: dict):
        subtitle_id = protocol.parse_subtitle_select(data)
        await self.in_room(conn, lambda room: room.select_subtitle(conn.id, subtitle_id))

    async def on_torrent_status(self, conn: Connection, data: dict):
        status = protocol.parse_torrent_status(data)
        await self.in_room(conn, lambda room: room.relay_torrent_status(conn.id, status))
