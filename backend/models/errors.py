"""
Game error taxonomy.

Each error carries the HTTP status the REST routes answer with and the
machine-readable code the WebSocket hub puts in its ``error`` frames.
"""


class GameError(Exception):
    status_code: int = 400
    code: str = "GAME_ERROR"

    def __init__(self, message: str, code: str = ""):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(GameError):
    status_code = 422
    code = "INVALID_INPUT"


class NotFoundError(GameError):
    status_code = 404
    code = "NOT_FOUND"


class CapacityError(GameError):
    """Room full, or not enough players to start."""
    status_code = 400
    code = "ROOM_FULL"


class NotCreatorError(GameError):
    status_code = 403
    code = "NOT_CREATOR"


class InvalidPhaseError(GameError):
    status_code = 409
    code = "WRONG_PHASE"


class AlreadyVotedError(GameError):
    status_code = 409
    code = "VOTE_ALREADY_CAST"


class DuplicateRoomCodeError(GameError):
    status_code = 409
    code = "ROOM_CODE_TAKEN"
