"""
Exception types shared across the movie party server
"""


class MoviePartyError(Exception):
    """Base class for all server errors"""


class ProtocolError(MoviePartyError):
    """Inbound WebSocket message could not be handled"""


class MalformedMessageError(ProtocolError):
    """Frame is not JSON or its fields do not validate"""


class UnknownMessageError(ProtocolError):
    """Frame carries a type tag we do not recognise"""

    def __init__(self, kind):
        super().__init__(f"unknown message type: {kind!r}")
        self.kind = kind


class MembershipError(MoviePartyError):
    """A join could not be accepted"""

    reason = "join rejected"

    def __init__(self, message: str = ""):
        super().__init__(message or self.reason)


class AlreadyJoinedError(MembershipError):
    reason = "already joined"


class DuplicateNameError(MembershipError):
    reason = "name already taken in this room"


class NotJoinedError(MembershipError):
    reason = "join a room first"


class UploadError(MoviePartyError):
    """Upload rejected; carries the HTTP status to answer with"""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.status = status
