"""
Inbound WebSocket message parsing

Frames are JSON objects: {"type": "<message>", "data": {...}}. Anything
that fails here is answered with an InvalidMessage error and never reaches
the room.
"""
import json
import math
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import InvalidMessage
from .room import (
    ADMIN, GUEST, MEDIA_ACTIONS, VIDEO_ACTIONS,
    FileMedia, Media, StreamMedia, Subtitle, TorrentMedia
)

MESSAGE_TYPES = (
    "join-room",
    "validate-room",
    "video-action",
    "media-action",
    "force-sync",
    "transfer-admin",
    "kick-user",
    "subtitle-upload",
    "subtitle-select",
    "torrent-status",
)


@dataclass
class JoinRequest:
    room_code: str
    name: str
    role: str
    is_creator: bool = False
    admin_token: Optional[str] = None


def parse_frame(raw: str) -> Tuple[str, dict]:
    try:
        message = json.loads(raw)
    except ValueError:
        raise InvalidMessage("Message is not valid JSON")

    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        raise InvalidMessage("Message needs a string 'type'")

    msg_type = message["type"]
    if msg_type not in MESSAGE_TYPES:
        raise InvalidMessage(f"Unknown message type: {msg_type}")

    data = message.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidMessage("'data' must be an object")
    return msg_type, data


# ============================================================
# FIELD HELPERS
# ============================================================

def _string(data: dict, key: str, required: bool = True, default=None):
    value = data.get(key)
    if value is None:
        if required:
            raise InvalidMessage(f"Missing field: {key}")
        return default
    if not isinstance(value, str):
        raise InvalidMessage(f"Field {key} must be a string")
    return value


def _number(data: dict, key: str, default=None):
    value = data.get(key)
    if value is None:
        return default
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidMessage(f"Field {key} must be a number")
    if not math.isfinite(value):
        raise InvalidMessage(f"Field {key} must be finite")
    return float(value)


def _size(data: dict, key: str = "size"):
    value = _number(data, key)
    return None if value is None else int(value)


def _payload(data: dict, key: str) -> dict:
    value = data.get(key)
    if not isinstance(value, dict):
        raise InvalidMessage(f"Field {key} must be an object")
    return value


# ============================================================
# COMMANDS
# ============================================================

def parse_join(data: dict) -> JoinRequest:
    role = data.get("userRole") or GUEST
    if role not in (ADMIN, GUEST):
        raise InvalidMessage(f"Unknown role: {role}")
    return JoinRequest(
        room_code=parse_room_code(data),
        name=_string(data, "userName", required=False, default=""),
        role=role,
        is_creator=bool(data.get("isCreator")),
        admin_token=_string(data, "adminToken", required=False),
    )


def parse_room_code(data: dict) -> str:
    return _string(data, "roomId", required=False) or _string(data, "roomCode")


def parse_video_action(data: dict) -> Tuple[str, float, Optional[float]]:
    action = _string(data, "action")
    if action not in VIDEO_ACTIONS:
        raise InvalidMessage(f"Unknown video action: {action}")
    position = _number(data, "time", default=0.0)
    rate = _number(data, "playbackRate")
    if rate is not None and rate <= 0:
        raise InvalidMessage("playbackRate must be positive")
    return action, position, rate


def parse_media(action: str, payload: dict) -> Media:
    if action == "load-file":
        return FileMedia(
            url=_string(payload, "url"),
            name=(_string(payload, "name", required=False)
                  or _string(payload, "originalName", required=False, default="")),
            size=_size(payload),
        )
    if action == "load-torrent":
        return TorrentMedia(
            info_hash=_string(payload, "infoHash"),
            name=_string(payload, "name", required=False, default=""),
            size=_size(payload),
            stream_url=_string(payload, "streamUrl", required=False),
        )
    if action == "load-stream":
        return StreamMedia(
            relay_url=_string(payload, "relayUrl"),
            name=_string(payload, "name", required=False),
        )
    raise InvalidMessage(f"Unknown media action: {action}")


def parse_media_action(data: dict) -> Tuple[str, Optional[Media]]:
    action = _string(data, "action")
    if action not in MEDIA_ACTIONS:
        raise InvalidMessage(f"Unknown media action: {action}")
    if action == "clear-media":
        return action, None
    return action, parse_media(action, _payload(data, "mediaData"))


def parse_force_sync(data: dict) -> Tuple[float, bool]:
    return _number(data, "time", default=0.0), bool(data.get("isPlaying"))


def parse_target_name(data: dict) -> str:
    return _string(data, "targetUserName")


def parse_subtitle(data: dict) -> Subtitle:
    payload = _payload(data, "subtitle")
    return Subtitle(
        filename=_string(payload, "filename"),
        label=_string(payload, "label", required=False) or _string(payload, "filename"),
        language=_string(payload, "language", required=False),
        url=_string(payload, "url", required=False),
    )


def parse_subtitle_select(data: dict):
    subtitle_id = data.get("subtitleId")
    # None switches subtitles off
    if subtitle_id is not None and (isinstance(subtitle_id, bool)
                                    or not isinstance(subtitle_id, (str, int))):
        raise InvalidMessage("subtitleId must be a string or integer")
    return subtitle_id


def parse_torrent_status(data: dict) -> dict:
    status = {}
    for key in ("infoHash", "name"):
        value = _string(data, key, required=False)
        if value is not None:
            status[key] = value
    for key in ("progress", "downloadSpeed", "uploadSpeed", "numPeers", "timeRemaining"):
        value = _number(data, key)
        if value is not None:
            status[key] = value
    return status
