class SignalingError(Exception):
    """Base class for errors reported back to the client in an acknowledgment."""

    default_message = "Signaling error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCode(SignalingError):
    default_message = "Invalid room code"


class RoomExists(SignalingError):
    default_message = "Room already exists"


class RoomNotFound(SignalingError):
    default_message = "Room does not exist"


class RoomFull(SignalingError):
    default_message = "Room is full"


class NotAParticipant(SignalingError):
    default_message = "Not a room participant"


class InvalidPayload(SignalingError):
    default_message = "Invalid payload"


class StoreWriteFailed(SignalingError):
    # Internal only: logged by the state writer, never sent to clients.
    default_message = "Failed to save state"
