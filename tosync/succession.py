"""
Admin succession: who takes over when the admin leaves
"""
from typing import Iterable, Optional


def pick_next_admin(members: Iterable, departing_id: Optional[str] = None):
    """
    Pick the member that should become admin

    Args:
        members: Members still in the room (anything with `connection_id`
            and `joined_at`)
        departing_id: Connection ID to exclude, if it is still in `members`

    Returns:
        The earliest-joined member, ties broken by connection ID, or None
    """
    candidates = [m for m in members if m.connection_id != departing_id]
    if not candidates:
        return None
    return min(candidates, key=lambda m: (m.joined_at, m.connection_id))
