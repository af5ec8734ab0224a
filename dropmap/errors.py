from __future__ import annotations


class DropMapError(Exception):
    """Base class for engine errors."""


class NetworkFailure(DropMapError):
    """Transport error, timeout, 5xx or an unreadable response body."""


class MissingCredential(DropMapError):
    """No bearer token is available for an authenticated call."""


class BackendRejection(DropMapError):
    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message

    def __str__(self) -> str:
        return f"{self.status}: {self.message}"


class ValidationError(DropMapError):
    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class ReadOnlyMode(DropMapError):
    """Mutation attempted on a session opened on the public mirror."""
