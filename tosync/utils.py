"""
Utility functions for room codes, connection IDs and display names
"""
import random
import secrets
import string
import uuid
from typing import Iterable

from .errors import InvalidRoomCode

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_connection_id() -> str:
    """Generate a unique connection ID"""
    return "conn_" + uuid.uuid4().hex[:12]


def generate_access_token() -> str:
    """Generate an unguessable per-connection token"""
    return secrets.token_urlsafe(24)


def generate_room_code(length: int = 6) -> str:
    """Generate a random alphanumeric room code"""
    return "".join(random.choice(ROOM_CODE_ALPHABET) for _ in range(length))


def normalize_room_code(code, length: int = 6) -> str:
    """Validate a room code's shape and return its canonical (upper-case) form"""
    if not isinstance(code, str) or len(code) != length:
        raise InvalidRoomCode()
    if not code.isascii() or not code.isalnum():
        raise InvalidRoomCode()
    return code.upper()


def generate_client_name() -> str:
    """Generate a random fun viewer name"""
    adjectives = [
        "Sleepy", "Popcorn", "Cosmic", "Retro", "Neon", "Silent",
        "Stellar", "Jazzy", "Cinematic", "Velvet", "Midnight", "Golden"
    ]
    nouns = [
        "Viewer", "Critic", "Projector", "Reel", "Usher", "Director",
        "Matinee", "Premiere", "Cameo", "Montage", "Sequel", "Extra"
    ]
    return random.choice(adjectives) + random.choice(nouns) + str(random.randint(1, 99))


def unique_name(base: str, taken: Iterable[str]) -> str:
    """Return `base`, or `base (n)` with the smallest n >= 1 not in `taken`"""
    taken = set(taken)
    if base not in taken:
        return base
    counter = 1
    while f"{base} ({counter})" in taken:
        counter += 1
    return f"{base} ({counter})"
