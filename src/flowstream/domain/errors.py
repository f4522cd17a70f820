from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorKind(Enum):
    NETWORK = "NETWORK"
    API = "API"
    PERMISSION = "PERMISSION"
    SAFETY = "SAFETY"
    QUOTA = "QUOTA"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ClassifiedError:
    message: str
    kind: ErrorKind
    details: Any = None


class SessionSetupError(Exception):
    def __init__(self, error: ClassifiedError) -> None:
        super().__init__(error.message)
        self.error = error


ABRUPT_CLOSE_CODES = {1005, 1006}
NORMAL_CLOSE_CODES = {1000, 1001}
RATE_LIMIT_CODE = 429
CLIENT_ERROR_WS_CODES = {1002, 1003, 1007, 1008, 1009, 1010}
SERVER_ERROR_WS_CODES = {1011, 1012, 1013, 1014}


def classify_close(code: int | None, reason: str = "") -> ClassifiedError:
    """Map a transport closure (WebSocket close code or HTTP status) to an error."""
    details = {"code": code, "reason": reason}

    if code is None or code in ABRUPT_CLOSE_CODES:
        return ClassifiedError("The connection dropped unexpectedly.", ErrorKind.NETWORK, details)
    if code == RATE_LIMIT_CODE:
        return ClassifiedError("API quota exceeded. Please slow down.", ErrorKind.QUOTA, details)
    if 400 <= code < 500 or code in CLIENT_ERROR_WS_CODES:
        return ClassifiedError(
            f"AI service error ({code}): {reason or 'Invalid request'}",
            ErrorKind.API,
            details,
        )
    if 500 <= code < 600 or code in SERVER_ERROR_WS_CODES:
        return ClassifiedError(
            "The speech service is currently struggling. Try again in a moment.",
            ErrorKind.API,
            details,
        )
    if code in NORMAL_CLOSE_CODES:
        return ClassifiedError("The session was closed by the service.", ErrorKind.NETWORK, details)
    return ClassifiedError(
        f"The connection closed unexpectedly ({code}).", ErrorKind.NETWORK, details
    )


def classify_transport_failure(exc: BaseException) -> ClassifiedError:
    return ClassifiedError(
        "A connection error occurred. Check your network.",
        ErrorKind.NETWORK,
        {"exception": repr(exc)},
    )


def missing_credential() -> ClassifiedError:
    return ClassifiedError("API key is missing. Please check your setup.", ErrorKind.API)


def permission_denied(exc: BaseException | None = None) -> ClassifiedError:
    details = {"exception": repr(exc)} if exc is not None else None
    return ClassifiedError("Microphone access denied.", ErrorKind.PERMISSION, details)


def audio_init_failed(exc: BaseException | None = None) -> ClassifiedError:
    details = {"exception": repr(exc)} if exc is not None else None
    return ClassifiedError("Unable to start the audio engine.", ErrorKind.UNKNOWN, details)
