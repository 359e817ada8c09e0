"""Domain errors raised by the repositories and mapped to client payloads at the edges."""


class ChatError(Exception):
    """Base class for every failure the chat core reports to its callers."""

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class AlreadyExistsError(ChatError):
    """Resource already exists"""


class NotFoundError(ChatError):
    """Resource not found"""


class UnauthorizedError(ChatError):
    """Credentials do not match"""


class UnknownIdentityError(ChatError):
    """User not found"""


class PersistenceError(ChatError):
    """Storage call failed"""


class MalformedIdentifierError(ChatError):
    """Malformed identifier"""


def parse_identifier(value) -> int:
    """Convert a client supplied id (path, query or payload value) to a storage id."""
    if isinstance(value, bool):
        raise MalformedIdentifierError(f"Invalid identifier: {value!r}")
    try:
        identifier = int(str(value).strip())
    except (TypeError, ValueError):
        raise MalformedIdentifierError(f"Invalid identifier: {value!r}")
    if identifier <= 0:
        raise MalformedIdentifierError(f"Invalid identifier: {value!r}")
    return identifier
