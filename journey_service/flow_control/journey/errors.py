"""Journey error taxonomy."""
from enum import Enum


class JourneyErrorCode(str, Enum):
    """Closed set of failure kinds raised by the journey core."""

    # Graph construction
    DUPLICATE_STAGE_ID = "DUPLICATE_STAGE_ID"
    DUPLICATE_ONBOARDING_STAGE = "DUPLICATE_ONBOARDING_STAGE"
    DUPLICATE_TERMINAL_STAGE = "DUPLICATE_TERMINAL_STAGE"
    UNKNOWN_STAGE = "UNKNOWN_STAGE"

    # Journey.validate()
    NO_ONBOARDING_STAGE = "NO_ONBOARDING_STAGE"
    NO_TERMINAL_STAGE = "NO_TERMINAL_STAGE"
    NO_PATH_TO_TERMINAL = "NO_PATH_TO_TERMINAL"

    # Engine registration / lookup
    JOURNEY_ALREADY_EXISTS = "JOURNEY_ALREADY_EXISTS"
    INVALID_JOURNEY = "INVALID_JOURNEY"
    JOURNEY_NOT_FOUND = "JOURNEY_NOT_FOUND"

    # Per-user operations
    USER_NOT_ONBOARDED = "USER_NOT_ONBOARDED"
    USER_ALREADY_ONBOARDED = "USER_ALREADY_ONBOARDED"
    INVALID_STAGE_TRANSITION = "INVALID_STAGE_TRANSITION"


class JourneyError(Exception):
    """Raised by journey models and the engine with a typed error code."""

    def __init__(self, code: JourneyErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> dict:
        """Convert to the {error, message} pair used by the API."""
        return {"error": self.code.value, "message": self.message}

    def __repr__(self) -> str:
        return f"JourneyError({self.code.value}, {self.message!r})"
