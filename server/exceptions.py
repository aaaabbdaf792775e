"""Error types raised by the escrow service."""


class EscrowError(Exception):
    """Base for all escrow service errors."""


class NotFoundException(EscrowError):
    """A lookup by id or foreign key found no row."""

    def __init__(self, id):
        self.id = id
        super().__init__(f"Entity with identifier {id} does not exist")


class MessageException(EscrowError):
    """Business-rule rejection. The message is surfaced to the caller verbatim."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationException(EscrowError):
    """Malformed request payload. Raised before anything is written."""

    def __init__(self, message: str, errors: list | None = None):
        self.errors = errors or []
        super().__init__(message)
