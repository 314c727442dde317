"""
Typed failures raised by room operations and reported back to the client
"""


class TosyncError(Exception):
    """Base error; `code` is the stable identifier sent on the wire"""

    code = "Error"
    default_message = "Request failed"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class InvalidRoomCode(TosyncError):
    code = "InvalidRoomCode"
    default_message = "Invalid room code"


class RoomNotFound(TosyncError):
    code = "RoomNotFound"
    default_message = "Room not found"


class NotAuthorized(TosyncError):
    code = "NotAuthorized"
    default_message = "Only admins can do that"


class TargetNotFound(TosyncError):
    code = "TargetNotFound"
    default_message = "Target user not found"


class SelfKick(TosyncError):
    code = "SelfKick"
    default_message = "Cannot kick yourself"


class DuplicateAction(TosyncError):
    # Suppressed by the gateway, never shown to the user
    code = "DuplicateAction"
    default_message = "Duplicate action ignored"


class Timeout(TosyncError):
    code = "Timeout"
    default_message = "Request timed out"


class InvalidMessage(TosyncError):
    code = "InvalidMessage"
    default_message = "Malformed message"


class NotInRoom(TosyncError):
    code = "NotInRoom"
    default_message = "Join a room first"
