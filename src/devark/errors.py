"""Error taxonomy shared by every devark component.

Components translate low-level failures (sqlite3, OS, JSON, HTTP) into one
of these at their boundary. The message bus turns any of them into an
``error`` reply carrying ``{name, message}``.
"""


class DevarkError(Exception):
    """Base class for all devark errors."""

    name = "DevarkError"
    retryable = False

    def to_dict(self) -> dict:
        return {"name": self.name, "message": str(self)}


class TransientIOError(DevarkError):
    """SQLite busy, EAGAIN, HTTP 5xx or a timeout. Safe to retry."""

    name = "TransientIO"
    retryable = True


class PermanentIOError(DevarkError):
    """Missing database, permission denied, unexpected 4xx."""

    name = "PermanentIO"


class ParseError(DevarkError):
    """Malformed composer JSON or malformed scoring output."""

    name = "ParseError"


class AuthError(DevarkError):
    """Token missing, token undecryptable, or backend rejected it."""

    name = "AuthError"


class QuotaError(DevarkError):
    """A hard storage cap was reached."""

    name = "QuotaError"


class InvalidInputError(DevarkError):
    """Rejected at the API surface: bad token, unknown message type, etc."""

    name = "InvalidInput"


def error_payload(exc: BaseException) -> dict:
    """Build the ``{name, message}`` body for a bus error reply."""
    if isinstance(exc, DevarkError):
        return exc.to_dict()
    return {"name": type(exc).__name__, "message": str(exc)}
