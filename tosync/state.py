"""
In-memory state: the room store and the connection registry

Both objects are created once per application and injected where needed.
Nothing here survives a restart.
"""
import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

from .errors import RoomNotFound
from .resources import RoomResources
from .room import RoomSession, TorrentMedia
from .utils import generate_access_token

logger = logging.getLogger("tosync.state")


class ConnectionRegistry:
    """
    connection_id -> room code, for membership checks outside the socket

    Connection ids are visible to every room member, so out-of-band callers
    identify themselves with the access token handed out at connect time.
    """

    def __init__(self):
        self._rooms: Dict[str, str] = {}
        self._tokens: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def issue_token(self, connection_id: str) -> str:
        token = generate_access_token()
        self._tokens[token] = connection_id
        return token

    def revoke_token(self, token: str):
        self._tokens.pop(token, None)

    def bind(self, connection_id: str, code: str):
        self._rooms[connection_id] = code

    def unbind(self, connection_id: str) -> Optional[str]:
        return self._rooms.pop(connection_id, None)

    def room_of(self, connection_id: str) -> Optional[str]:
        return self._rooms.get(connection_id)

    def is_member(self, connection_id: str, code: str) -> bool:
        return self._rooms.get(connection_id) == code

    def authorize(self, token: str, code: str) -> bool:
        """True if the token's connection is currently a member of `code`"""
        connection_id = self._tokens.get(token)
        return connection_id is not None and self.is_member(connection_id, code)


class RoomStore:
    """Owns room code -> RoomSession; creation, lookup and eviction"""

    def __init__(
        self,
        resources: Optional[RoomResources] = None,
        clock: Callable[[], float] = time.time,
        inactivity_timeout: float = 5 * 60,
        duplicate_window: float = 2.0,
    ):
        self.resources = resources
        self.clock = clock
        self.inactivity_timeout = inactivity_timeout
        self.duplicate_window = duplicate_window
        self._rooms: Dict[str, RoomSession] = {}
        # Guards insert/delete on the map only; each room has its own lock
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, code: str) -> bool:
        return code in self._rooms

    def rooms(self) -> List[RoomSession]:
        return list(self._rooms.values())

    async def get(self, code: str) -> RoomSession:
        async with self._lock:
            room = self._rooms.get(code)
        if room is None:
            raise RoomNotFound()
        return room

    async def get_or_create(self, code: str, create: bool = False) -> RoomSession:
        async with self._lock:
            room = self._rooms.get(code)
            if room is not None:
                room.touch()
                return room
            if not create:
                raise RoomNotFound()
            room = RoomSession(code, clock=self.clock, duplicate_window=self.duplicate_window)
            self._rooms[code] = room
            logger.info("🎪 Room created: %s", code)
            return room

    async def evict_inactive(self, now: Optional[float] = None,
                             timeout: Optional[float] = None) -> List[str]:
        """
        Remove empty rooms idle for longer than `timeout`

        Rooms with an operation in flight are skipped until the next sweep.

        Returns:
            Codes of the evicted rooms
        """
        now = self.clock() if now is None else now
        timeout = self.inactivity_timeout if timeout is None else timeout

        evicted = []
        async with self._lock:
            for code, room in list(self._rooms.items()):
                if room.lock.locked():
                    continue
                if room.is_empty and now - room.last_activity > timeout:
                    del self._rooms[code]
                    room.evicted = True
                    evicted.append(room)
            torrents_in_use = {
                r.media.info_hash for r in self._rooms.values()
                if isinstance(r.media, TorrentMedia)
            }

        await self._release(evicted, torrents_in_use)
        for room in evicted:
            logger.info("🧹 Cleaned up inactive room: %s", room.code)
        return [room.code for room in evicted]

    async def close(self):
        """Drop every room and release its resources"""
        async with self._lock:
            rooms = list(self._rooms.values())
            self._rooms.clear()
            for room in rooms:
                room.evicted = True
        await self._release(rooms, set())
        logger.info("Room store closed (%d rooms dropped)", len(rooms))

    async def _release(self, rooms: List[RoomSession], torrents_in_use: set):
        if self.resources is None or not rooms:
            return
        loop = asyncio.get_running_loop()
        released = set()
        for room in rooms:
            await loop.run_in_executor(None, self.resources.release_room, room.code)
            if isinstance(room.media, TorrentMedia):
                info_hash = room.media.info_hash
                if info_hash in torrents_in_use or info_hash in released:
                    continue
                released.add(info_hash)
                await loop.run_in_executor(None, self.resources.release_torrent, info_hash)
