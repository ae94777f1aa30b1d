"""Error types for broker-boundary failures.

Error categorization determines how a failure is surfaced:
- DeclarationMismatchError: topology declare conflicts with existing broker state
- InvalidSetupError: connection, authorization or negotiation failure
- BowlerGeneralError: anything else surfaced from the broker boundary

Application errors raised inside a message handler are never wrapped into
these types; the consumer reports them as-is.
"""

import traceback
from enum import Enum
from typing import Any

from aio_pika.exceptions import AMQPChannelError, AMQPConnectionError


class ErrorKind(str, Enum):
    """Classification of a broker-boundary failure."""

    DECLARATION_MISMATCH = "declaration_mismatch"
    INVALID_SETUP = "invalid_setup"
    BOWLER_GENERAL = "bowler_general"


class BowlerError(Exception):
    """
    A classified failure from the broker boundary.

    Keeps everything needed to diagnose the original failure, together with
    the declaration parameters and arguments in effect at the call site.
    Broker failures are built by classify(). Misuse detected locally, such
    as using a channel before connect(), raises a subclass directly without
    going through the exception handler.
    """

    kind: ErrorKind = ErrorKind.BOWLER_GENERAL

    def __init__(
        self,
        message: str,
        *,
        code: Any = None,
        file: str | None = None,
        line: int | None = None,
        trace: str = "",
        frames: list[traceback.FrameSummary] | None = None,
        cause: BaseException | None = None,
        original: BaseException | None = None,
        parameters: dict[str, Any] | None = None,
        arguments: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.file = file
        self.line = line
        self.trace = trace
        self.frames = frames or []
        self.cause = cause
        self.original = original
        self.parameters = dict(parameters) if parameters else {}
        self.arguments = dict(arguments) if arguments else {}

    def __str__(self) -> str:
        if self.code is not None:
            return f"[{self.kind.value}:{self.code}] {self.message}"
        return f"[{self.kind.value}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "code": self.code,
            "file": self.file,
            "line": self.line,
            "parameters": self.parameters,
            "arguments": self.arguments,
        }


class DeclarationMismatchError(BowlerError):
    """Exchange or queue declaration conflicts with what the broker holds."""

    kind = ErrorKind.DECLARATION_MISMATCH


class InvalidSetupError(BowlerError):
    """Connection-level failure: refused access, bad credentials, negotiation."""

    kind = ErrorKind.INVALID_SETUP


class BowlerGeneralError(BowlerError):
    """Any other failure surfaced from the broker boundary."""

    kind = ErrorKind.BOWLER_GENERAL


_ERROR_TYPES: dict[ErrorKind, type[BowlerError]] = {
    ErrorKind.DECLARATION_MISMATCH: DeclarationMismatchError,
    ErrorKind.INVALID_SETUP: InvalidSetupError,
    ErrorKind.BOWLER_GENERAL: BowlerGeneralError,
}


def classify_kind(error: BaseException) -> ErrorKind:
    """Map a broker exception to its kind. First match wins."""
    if isinstance(error, AMQPChannelError):
        return ErrorKind.DECLARATION_MISMATCH
    if isinstance(error, AMQPConnectionError):
        return ErrorKind.INVALID_SETUP
    return ErrorKind.BOWLER_GENERAL


def _error_code(error: BaseException) -> Any:
    code = getattr(error, "code", None)
    if code is None and hasattr(error, "reply_code"):
        code = error.reply_code
    # aiormq channel/connection errors carry (reply_code, reply_text) in args
    if code is None and error.args and isinstance(error.args[0], int):
        code = error.args[0]
    return code


def classify(
    error: BaseException,
    parameters: dict[str, Any] | None = None,
    arguments: dict[str, Any] | None = None,
) -> BowlerError:
    """
    Build the classified error for a broker failure.

    Args:
        error: The original exception
        parameters: Declaration parameters at the call site
        arguments: Declaration arguments at the call site

    Returns:
        BowlerError subclass matching the error's kind
    """
    frames = traceback.extract_tb(error.__traceback__)
    last = frames[-1] if frames else None

    return _ERROR_TYPES[classify_kind(error)](
        str(error) or error.__class__.__name__,
        code=_error_code(error),
        file=last.filename if last else None,
        line=last.lineno if last else None,
        trace="".join(traceback.format_tb(error.__traceback__)),
        frames=list(frames),
        cause=error.__cause__ or error.__context__,
        original=error,
        parameters=parameters or {},
        arguments=arguments or {},
    )
