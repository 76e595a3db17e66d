"""Error taxonomy shared by the ingest, routing and ETA pipeline.

Each error carries the HTTP status the API layer renders it with, so the
services never import FastAPI.
"""


class TransitError(Exception):
    """Base class for expected, user-visible pipeline failures."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(TransitError):
    """Payload shape or range violation. Carries every violated constraint."""

    status_code = 400

    def __init__(self, violations: list[str], subject: str = "GPS payload") -> None:
        self.violations = list(violations)
        super().__init__(f"Invalid {subject}: " + ", ".join(self.violations))


class Unauthorized(TransitError):
    status_code = 401


class NotFound(TransitError):
    status_code = 404


class Conflict(TransitError):
    status_code = 409


class UpstreamError(TransitError):
    """Travel-time oracle failure: timeout, bad response or HTTP error."""

    status_code = 502


class RateLimited(UpstreamError):
    status_code = 429


class StorageError(TransitError):
    status_code = 500


class CacheError(StorageError):
    pass
