from __future__ import annotations


class RoomAccessError(Exception):
    """Base class for classified room-access failures.

    Every subclass carries the HTTP status and the stable machine-readable code
    the API reports. Messages shown to users stay generic; details go to the log.
    """

    status_code: int = 500
    code: str = "ROOM_ACCESS_ERROR"
    message: str = "Room access operation failed."
    retryable: bool = False

    def __init__(self, message: str | None = None, *, room_number: str | None = None) -> None:
        super().__init__(message or self.message)
        self.room_number = room_number

    def to_dict(self) -> dict:
        body: dict = {"code": self.code, "message": self.message}
        if self.retryable:
            body["retryable"] = True
        return body


class InvalidOrExpiredCode(RoomAccessError):
    # Never distinguishes "never existed" from "rotated out".
    status_code = 401
    code = "INVALID_OR_EXPIRED_CODE"
    message = "This QR code is not valid. Please scan again or contact staff."


class AuthenticationFailed(RoomAccessError):
    status_code = 401
    code = "AUTHENTICATION_FAILED"
    message = "Login failed. Please scan again or contact staff."


class ProvisioningFailed(RoomAccessError):
    status_code = 503
    code = "PROVISIONING_FAILED"
    message = "Could not set up the room account. Please try again."
    retryable = True


class DuplicateActiveCode(RoomAccessError):
    status_code = 500
    code = "DUPLICATE_ACTIVE_CODE"
    message = "Room already has an active code (concurrent update detected)."


class RoomAlreadyHasActiveCode(RoomAccessError):
    status_code = 409
    code = "ROOM_ALREADY_HAS_ACTIVE_CODE"
    message = "Room already has an active code. Rotate it instead."


class NoActiveCode(RoomAccessError):
    status_code = 404
    code = "NO_ACTIVE_CODE"
    message = "Room has no active code."


class RotationConflict(RoomAccessError):
    status_code = 409
    code = "ROTATION_CONFLICT"
    message = "The code was rotated by someone else. Reload and try again."
    retryable = True


class CodeGenerationFailed(RoomAccessError):
    status_code = 500
    code = "CODE_GENERATION_FAILED"
    message = "Could not generate a unique code."
    retryable = True


class InvalidRoomNumber(RoomAccessError):
    status_code = 400
    code = "INVALID_ROOM_NUMBER"
    message = "Invalid room number."
