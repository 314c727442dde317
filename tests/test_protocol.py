import pytest

from tosync import protocol
from tosync.errors import InvalidMessage
from tosync.room import FileMedia, StreamMedia, TorrentMedia


@pytest.mark.parametrize("raw", [
    "not json",
    "[1, 2]",
    '{"data": {}}',
    '{"type": 5}',
    '{"type": "dance"}',
    '{"type": "join-room", "data": []}',
])
def test_malformed_frames(raw):
    with pytest.raises(InvalidMessage):
        protocol.parse_frame(raw)


def test_frame_without_data():
    assert protocol.parse_frame('{"type": "validate-room"}') == ("validate-room", {})


def test_parse_join_defaults_to_guest():
    req = protocol.parse_join({"roomId": "ab12cd", "userName": "Sam"})
    assert req.role == "guest"
    assert req.is_creator is False
    assert req.room_code == "ab12cd"


def test_parse_join_accepts_room_code_alias():
    req = protocol.parse_join({"roomCode": "AB12CD", "userRole": "admin", "isCreator": True})
    assert req.room_code == "AB12CD"
    assert req.role == "admin"
    assert req.is_creator is True


def test_parse_join_rejects_bad_input():
    with pytest.raises(InvalidMessage):
        protocol.parse_join({"userName": "Sam"})
    with pytest.raises(InvalidMessage):
        protocol.parse_join({"roomId": "AB12CD", "userRole": "owner"})


def test_parse_video_action():
    assert protocol.parse_video_action({"action": "seek", "time": 12}) == ("seek", 12.0, None)
    assert protocol.parse_video_action({"action": "playback-rate", "time": 1, "playbackRate": 1.5}) == (
        "playback-rate", 1.0, 1.5)


@pytest.mark.parametrize("data", [
    {"action": "rewind", "time": 1},
    {"action": "play", "time": "ten"},
    {"action": "play", "time": True},
    {"action": "play", "time": float("nan")},
    {"action": "playback-rate", "playbackRate": 0},
])
def test_parse_video_action_rejects(data):
    with pytest.raises(InvalidMessage):
        protocol.parse_video_action(data)


def test_parse_media_action_variants():
    action, media = protocol.parse_media_action({
        "action": "load-file",
        "mediaData": {"url": "/r/AB12CD/v/x.mp4", "originalName": "x.mp4", "size": 10},
    })
    assert media == FileMedia("/r/AB12CD/v/x.mp4", "x.mp4", 10)

    _, media = protocol.parse_media_action({
        "action": "load-torrent",
        "mediaData": {"infoHash": "abc", "name": "Movie", "streamUrl": "/stream"},
    })
    assert media == TorrentMedia("abc", "Movie", None, "/stream")

    _, media = protocol.parse_media_action({
        "action": "load-stream",
        "mediaData": {"relayUrl": "https://relay/live.m3u8"},
    })
    assert media == StreamMedia("https://relay/live.m3u8")

    assert protocol.parse_media_action({"action": "clear-media"}) == ("clear-media", None)


def test_parse_media_action_needs_payload():
    with pytest.raises(InvalidMessage):
        protocol.parse_media_action({"action": "load-file"})
    with pytest.raises(InvalidMessage):
        protocol.parse_media_action({"action": "load-file", "mediaData": {"name": "x.mp4"}})


def test_parse_subtitle():
    subtitle = protocol.parse_subtitle({"subtitle": {"filename": "x.vtt", "language": "en"}})
    assert subtitle.label == "x.vtt"
    assert subtitle.language == "en"


def test_parse_subtitle_select():
    assert protocol.parse_subtitle_select({"subtitleId": 2}) == 2
    assert protocol.parse_subtitle_select({}) is None
    with pytest.raises(InvalidMessage):
        protocol.parse_subtitle_select({"subtitleId": {"id": 1}})


def test_parse_torrent_status_keeps_known_fields():
    status = protocol.parse_torrent_status({"infoHash": "abc", "progress": 0.5, "evil": "<script>"})
    assert status == {"infoHash": "abc", "progress": 0.5}
