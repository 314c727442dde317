"""
Room session state machine: membership, roles, playback and media

Every method here is synchronous and must be called while holding the
room's lock. Methods return the Outbound events produced by the
transition; delivering them is the gateway's job.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union

from .errors import (
    DuplicateAction, InvalidMessage, NotAuthorized, NotInRoom, SelfKick, TargetNotFound
)
from .succession import pick_next_admin
from .utils import generate_client_name, unique_name

logger = logging.getLogger("tosync.room")

ADMIN = "admin"
GUEST = "guest"
ROLES = (ADMIN, GUEST)

VIDEO_ACTIONS = ("play", "pause", "seek", "playback-rate")
MEDIA_ACTIONS = ("load-file", "load-torrent", "load-stream", "clear-media")


# ============================================================
# EVENTS
# ============================================================

@dataclass
class Outbound:
    """One server event and who should receive it

    With `to` set the event goes to that single connection; otherwise it
    goes to every current room member not listed in `exclude`.
    """
    event: str
    data: dict
    to: Optional[str] = None
    exclude: Tuple[str, ...] = ()

    @classmethod
    def one(cls, connection_id: str, event: str, data: dict) -> "Outbound":
        return cls(event, data, to=connection_id)

    @classmethod
    def room(cls, event: str, data: dict, exclude: Tuple[str, ...] = ()) -> "Outbound":
        return cls(event, data, exclude=tuple(exclude))

    def frame(self) -> dict:
        return {"type": self.event, "data": self.data}


# ============================================================
# ROOM DATA
# ============================================================

@dataclass
class Member:
    connection_id: str
    name: str
    role: str
    joined_at: float

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN

    def to_dict(self) -> dict:
        return {
            "id": self.connection_id,
            "name": self.name,
            "role": self.role,
            "joinedAt": self.joined_at,
        }


@dataclass
class PlaybackState:
    playing: bool = False
    position: float = 0.0
    rate: float = 1.0

    def to_dict(self) -> dict:
        return {
            "isPlaying": self.playing,
            "currentTime": self.position,
            "playbackRate": self.rate,
        }


@dataclass
class FileMedia:
    url: str
    name: str
    size: Optional[int] = None
    loaded_by: Optional[str] = field(default=None, compare=False)
    loaded_at: Optional[float] = field(default=None, compare=False)

    def to_dict(self) -> dict:
        return {
            "type": "file",
            "url": self.url,
            "name": self.name,
            "size": self.size,
            "loadedBy": self.loaded_by,
            "loadedAt": self.loaded_at,
        }


@dataclass
class TorrentMedia:
    info_hash: str
    name: str
    size: Optional[int] = None
    stream_url: Optional[str] = None
    loaded_by: Optional[str] = field(default=None, compare=False)
    loaded_at: Optional[float] = field(default=None, compare=False)

    def to_dict(self) -> dict:
        return {
            "type": "torrent",
            "infoHash": self.info_hash,
            "name": self.name,
            "size": self.size,
            "streamUrl": self.stream_url,
            "loadedBy": self.loaded_by,
            "loadedAt": self.loaded_at,
        }


@dataclass
class StreamMedia:
    relay_url: str
    name: Optional[str] = None
    loaded_by: Optional[str] = field(default=None, compare=False)
    loaded_at: Optional[float] = field(default=None, compare=False)

    def to_dict(self) -> dict:
        return {
            "type": "stream",
            "relayUrl": self.relay_url,
            "name": self.name,
            "loadedBy": self.loaded_by,
            "loadedAt": self.loaded_at,
        }


Media = Union[FileMedia, TorrentMedia, StreamMedia]

MEDIA_TYPES = {
    "load-file": FileMedia,
    "load-torrent": TorrentMedia,
    "load-stream": StreamMedia,
}


@dataclass
class Subtitle:
    filename: str
    label: str
    language: Optional[str] = None
    url: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "label": self.label,
            "language": self.language,
            "url": self.url,
        }


# ============================================================
# ROOM SESSION
# ============================================================

class RoomSession:
    """A single watch-party room"""

    def __init__(
        self,
        code: str,
        clock: Callable[[], float] = time.time,
        duplicate_window: float = 2.0,
    ):
        self.code = code
        self.clock = clock
        self.duplicate_window = duplicate_window
        self.lock = asyncio.Lock()

        self.members: Dict[str, Member] = {}
        self.admin_id: Optional[str] = None
        self.playback = PlaybackState()
        self.media: Optional[Media] = None
        self.subtitles: List[Subtitle] = []

        self.created_at = clock()
        self.last_activity = self.created_at
        self.evicted = False

        # (connection_id, action, media, at) of the last accepted media action
        self._last_media_action = None

    def __repr__(self) -> str:
        return f"<RoomSession {self.code} members={len(self.members)} admin={self.admin_id}>"

    # ------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------

    @property
    def is_empty(self) -> bool:
        return not self.members

    @property
    def admin(self) -> Optional[Member]:
        if self.admin_id is None:
            return None
        return self.members.get(self.admin_id)

    def touch(self):
        self.last_activity = self.clock()

    def member(self, connection_id: str) -> Member:
        member = self.members.get(connection_id)
        if member is None:
            raise NotInRoom()
        return member

    def find_member(self, name: str) -> Optional[Member]:
        for member in self.members.values():
            if member.name == name:
                return member
        return None

    def users(self) -> List[dict]:
        return [m.to_dict() for m in self.members.values()]

    def snapshot(self, connection_id: str) -> dict:
        """Everything a late joiner needs to match the room with no extra round trips"""
        return {
            "room": self.code,
            "users": self.users(),
            "userCount": len(self.members),
            "videoState": self.playback.to_dict(),
            "currentMedia": self.media.to_dict() if self.media else None,
            "subtitles": [s.to_dict() for s in self.subtitles],
            "isAdmin": connection_id == self.admin_id,
        }

    def _require_admin(self, connection_id: str) -> Member:
        member = self.member(connection_id)
        if connection_id != self.admin_id:
            raise NotAuthorized()
        return member

    def _users_update(self) -> Outbound:
        return Outbound.room("users-update", {
            "users": self.users(),
            "userCount": len(self.members),
        })

    # ------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------

    def join(self, connection_id: str, name: str, role: str = GUEST,
             is_creator: bool = False) -> List[Outbound]:
        """Add a connection to the room and build the join fan-out"""
        events = []
        if connection_id in self.members:
            events.extend(self.leave(connection_id))

        now = self.clock()
        self.last_activity = now

        base_name = (name or "").strip() or generate_client_name()
        final_name = unique_name(base_name, (m.name for m in self.members.values()))

        if self.is_empty or self.admin_id is None:
            role = ADMIN
        elif role == ADMIN and self.admin_id is not None and not is_creator:
            role = GUEST
        if role not in ROLES:
            role = GUEST

        member = Member(connection_id, final_name, role, now)
        previous_admin = self.admin

        if member.is_admin:
            if previous_admin is not None:
                previous_admin.role = GUEST
                events.append(Outbound.one(previous_admin.connection_id, "admin-transferred", {
                    "newAdminName": member.name,
                    "formerAdminName": previous_admin.name,
                    "isYouFormerAdmin": True,
                    "isYouNewAdmin": False,
                    "reason": "creator-joined",
                }))
                logger.info("👑 Creator %s took admin from %s in %s",
                            member.name, previous_admin.name, self.code)
            self.admin_id = connection_id

        self.members[connection_id] = member
        logger.info("✅ %s (%s) joined room %s [%s]", member.name, member.role, self.code, connection_id)

        events.append(Outbound.one(connection_id, "room-state", self.snapshot(connection_id)))
        events.append(Outbound.room("user-joined", {
            "user": member.to_dict(),
            "userCount": len(self.members),
        }, exclude=(connection_id,)))
        events.append(self._users_update())
        return events

    def leave(self, connection_id: str) -> List[Outbound]:
        """Remove a connection, promoting a successor if it was the admin"""
        member = self.members.pop(connection_id, None)
        if member is None:
            return []

        self.touch()
        events = []

        if self.admin_id == connection_id:
            self.admin_id = None
            successor = pick_next_admin(self.members.values(), connection_id)
            if successor is not None:
                successor.role = ADMIN
                self.admin_id = successor.connection_id
                logger.info("👑 %s promoted to admin in room %s", successor.name, self.code)
                payload = {
                    "newAdminName": successor.name,
                    "formerAdminName": member.name,
                    "reason": "admin-left",
                }
                events.append(Outbound.one(successor.connection_id, "admin-transferred",
                                           dict(payload, isYouNewAdmin=True)))
                events.append(Outbound.room("admin-transferred", dict(payload, isYouNewAdmin=False),
                                            exclude=(successor.connection_id,)))

        events.append(Outbound.room("user-left", {
            "user": member.to_dict(),
            "userCount": len(self.members),
        }))
        if self.members:
            events.append(self._users_update())

        logger.info("👋 %s left room %s (admin: %s)", member.name, self.code, self.admin_id)
        return events

    def transfer_admin(self, requester_id: str, target_name: str) -> List[Outbound]:
        requester = self._require_admin(requester_id)
        target = self.find_member(target_name)
        if target is None or target.role != GUEST:
            raise TargetNotFound("Target user not found or is already an admin")

        requester.role = GUEST
        target.role = ADMIN
        self.admin_id = target.connection_id
        self.touch()

        logger.info("👑 Admin transferred from %s to %s in room %s",
                    requester.name, target.name, self.code)

        payload = {
            "newAdminName": target.name,
            "formerAdminName": requester.name,
            "reason": "manual-transfer",
        }
        return [
            Outbound.one(requester.connection_id, "admin-transferred",
                         dict(payload, isYouFormerAdmin=True, isYouNewAdmin=False)),
            Outbound.one(target.connection_id, "admin-transferred",
                         dict(payload, isYouFormerAdmin=False, isYouNewAdmin=True)),
            Outbound.room("admin-transferred",
                          dict(payload, isYouFormerAdmin=False, isYouNewAdmin=False),
                          exclude=(requester.connection_id, target.connection_id)),
            self._users_update(),
        ]

    def kick(self, requester_id: str, target_name: str) -> Tuple[Member, List[Outbound]]:
        """Remove a member by name; the caller closes the kicked connection"""
        admin = self._require_admin(requester_id)
        if target_name == admin.name:
            raise SelfKick()
        target = self.find_member(target_name)
        if target is None:
            raise TargetNotFound()

        del self.members[target.connection_id]
        self.touch()

        logger.info("🥾 %s was kicked from room %s by %s", target.name, self.code, admin.name)

        payload = {"kickedUserName": target.name, "kickedByAdmin": admin.name}
        return target, [
            Outbound.one(target.connection_id, "user-kicked", dict(payload, isYouKicked=True)),
            Outbound.room("user-kicked", dict(payload, isYouKicked=False)),
            self._users_update(),
        ]

    # ------------------------------------------------------------
    # Playback & media
    # ------------------------------------------------------------

    def apply_video_action(self, connection_id: str, action: str, position: float = 0.0,
                           rate: Optional[float] = None) -> List[Outbound]:
        member = self.member(connection_id)
        position = position or 0.0

        if action == "play":
            self.playback.playing = True
            self.playback.position = position
        elif action == "pause":
            self.playback.playing = False
            self.playback.position = position
        elif action == "seek":
            self.playback.position = position
        elif action == "playback-rate":
            self.playback.rate = rate or 1.0
            self.playback.position = position
        else:
            raise InvalidMessage(f"Unknown video action: {action}")

        now = self.clock()
        self.last_activity = now
        logger.debug("%s performed %s at %.2fs in room %s", member.name, action, position, self.code)

        return [Outbound.room("sync-video", {
            "action": action,
            "time": position,
            "playbackRate": self.playback.rate,
            "user": member.name,
            "timestamp": int(now * 1000),
        }, exclude=(connection_id,))]

    def apply_media_action(self, connection_id: str, action: str,
                           media: Optional[Media] = None) -> List[Outbound]:
        member = self._require_admin(connection_id)

        if action == "clear-media":
            media = None
        elif action not in MEDIA_TYPES:
            raise InvalidMessage(f"Unknown media action: {action}")
        elif not isinstance(media, MEDIA_TYPES[action]):
            raise InvalidMessage(f"{action} needs a {MEDIA_TYPES[action].__name__} payload")

        now = self.clock()
        last = self._last_media_action
        if last is not None:
            last_conn, last_action, last_media, last_at = last
            if ((last_conn, last_action, last_media) == (connection_id, action, media)
                    and now - last_at < self.duplicate_window):
                raise DuplicateAction()
        self._last_media_action = (connection_id, action, media, now)

        if media is not None:
            media.loaded_by = member.name
            media.loaded_at = now
        self.media = media
        self.playback = PlaybackState()
        self.last_activity = now

        logger.info("🎬 %s performed media action %s in room %s", member.name, action, self.code)

        return [Outbound.room("media-update", {
            "action": action,
            "mediaData": media.to_dict() if media else None,
            "user": member.name,
        })]

    def force_sync(self, connection_id: str, position: float, playing: bool) -> List[Outbound]:
        member = self._require_admin(connection_id)
        self.playback.position = position or 0.0
        self.playback.playing = bool(playing)
        self.touch()

        logger.info("%s forced sync at %.2fs in room %s", member.name, self.playback.position, self.code)

        return [Outbound.room("force-sync", {
            "time": self.playback.position,
            "isPlaying": self.playback.playing,
            "user": member.name,
        }, exclude=(connection_id,))]

    def add_subtitle(self, connection_id: str, subtitle: Subtitle) -> List[Outbound]:
        member = self._require_admin(connection_id)
        self.subtitles.append(subtitle)
        self.touch()

        logger.info("%s added subtitle %s in room %s", member.name, subtitle.label, self.code)

        return [Outbound.room("subtitle-added", {
            "subtitle": subtitle.to_dict(),
            "user": member.name,
        })]

    def select_subtitle(self, connection_id: str, subtitle_id) -> List[Outbound]:
        member = self.member(connection_id)
        self.touch()
        return [Outbound.room("subtitle-selected", {
            "subtitleId": subtitle_id,
            "user": member.name,
        }, exclude=(connection_id,))]

    def relay_torrent_status(self, connection_id: str, status: dict) -> List[Outbound]:
        # Informational only, room state is untouched
        member = self.member(connection_id)
        return [Outbound.room("torrent-progress", dict(status, user=member.name),
                              exclude=(connection_id,))]

    def to_stats(self) -> dict:
        admin = self.admin
        return {
            "roomId": self.code,
            "userCount": len(self.members),
            "hasMedia": self.media is not None,
            "adminPresent": admin is not None,
            "hasTorrent": isinstance(self.media, TorrentMedia),
            "createdAt": self.created_at,
            "lastActivity": self.last_activity,
            "currentAdmin": admin.name if admin else None,
        }
