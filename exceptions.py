"""Error taxonomy for the room service.

Every error carries the HTTP status it is rendered with; the app turns
them into ``{"error": message}`` bodies.
"""


class RoomServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationError(RoomServiceError):
    """Malformed input."""
    status_code = 400


class AuthError(RoomServiceError):
    """Missing or invalid credential, or caller not allowed in the room."""
    status_code = 401


class NotFoundError(RoomServiceError):
    status_code = 404


class CapacityError(RoomServiceError):
    """Room is at its maximum member count."""
    status_code = 400


class DependencyError(RoomServiceError):
    """The store or the code generator failed."""
    status_code = 500
