import asyncio

from tosync.room import ADMIN


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeResources:
    def __init__(self):
        self.released_rooms = []
        self.released_torrents = []

    def release_room(self, code):
        self.released_rooms.append(code)

    def release_torrent(self, info_hash):
        self.released_torrents.append(info_hash)


def assert_invariants(room):
    admins = [m for m in room.members.values() if m.role == ADMIN]
    assert len(admins) <= 1
    if room.admin_id is None:
        assert not admins
    else:
        assert room.admin_id in room.members
        assert room.members[room.admin_id].role == ADMIN
    names = [m.name for m in room.members.values()]
    assert len(names) == len(set(names))


def recipients(room, outbound):
    if outbound.to is not None:
        return [outbound.to]
    return [cid for cid in room.members if cid not in outbound.exclude]


def inbox(room, events, connection_id):
    """Events a connection would receive, as (type, data) pairs"""
    return [(e.event, e.data) for e in events if connection_id in recipients(room, e)]


# ============================================================
# WebSocket client helpers
# ============================================================

async def connect_with_token(client):
    """Open a socket; returns (ws, connection_id, access_token)"""
    ws = await client.ws_connect("/ws")
    hello = await ws.receive_json(timeout=2)
    assert hello["type"] == "connected"
    return ws, hello["data"]["connectionId"], hello["data"]["accessToken"]


async def connect(client):
    ws, connection_id, _ = await connect_with_token(client)
    return ws, connection_id


async def send(ws, msg_type, **data):
    await ws.send_json({"type": msg_type, "data": data})


async def expect(ws, msg_type, timeout=2.0):
    """Read frames until one of `msg_type` arrives and return its data"""
    while True:
        msg = await ws.receive_json(timeout=timeout)
        if msg["type"] == msg_type:
            return msg["data"]


async def drain(ws, timeout=0.2):
    """Return every frame that arrives before `timeout` of silence"""
    frames = []
    while True:
        try:
            frames.append(await ws.receive_json(timeout=timeout))
        except asyncio.TimeoutError:
            return frames
