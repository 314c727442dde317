"""
Release of per-room resources owned by external collaborators
(uploaded files on disk, torrents held by a torrent engine)
"""
import logging
import shutil
from pathlib import Path

logger = logging.getLogger("tosync.resources")


class RoomResources:
    """
    Frees what an evicted room leaves behind

    Args:
        data_dir: Base data directory; room files live in data_dir/rooms/<code>
        torrent_engine: Optional object with a `remove(info_hash)` method
    """

    def __init__(self, data_dir: Path, torrent_engine=None):
        self.rooms_dir = Path(data_dir) / "rooms"
        self.torrent_engine = torrent_engine

    def room_dir(self, code: str) -> Path:
        return self.rooms_dir / code

    def release_room(self, code: str):
        room_dir = self.room_dir(code)
        if room_dir.exists():
            shutil.rmtree(room_dir, ignore_errors=True)
            logger.info("🧹 Deleted room directory: %s", code)

    def release_torrent(self, info_hash: str):
        if self.torrent_engine is None:
            return
        self.torrent_engine.remove(info_hash)
        logger.info("🧲 Released torrent %s", info_hash)
