"""Exception hierarchy for the client.

Local validation errors also derive from ``ValueError`` and transport
errors from ``ConnectionError`` so callers can catch either family.
"""

from typing import Optional


class GreenlightError(Exception):
    """Base class for all client errors."""
    pass


class InvalidSeed(GreenlightError, ValueError):
    """Exception raised when a seed is not exactly 32 bytes."""
    pass


class TlsError(GreenlightError, ValueError):
    """Exception raised when certificate or key material cannot be parsed."""
    pass


class CredentialsError(GreenlightError):
    """Exception raised when credentials are of the wrong kind or malformed."""
    pass


class HsmdLoadError(GreenlightError):
    """Exception raised when the signing backend module cannot be loaded."""
    pass


class SchedulerError(GreenlightError):
    """Exception raised when the scheduler rejects or garbles a request.

    Attributes:
        status_code: HTTP status of the response, if one was received
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SchedulerConnectionError(SchedulerError, ConnectionError):
    """Transient failure reaching the scheduler. Safe to retry."""
    pass


class ServiceUnavailable(SchedulerError):
    """Scheduler is reachable but not serving. Retry with backoff."""
    pass


class AuthError(SchedulerError):
    """Scheduler refused our TLS identity, or we refused its certificate.

    Fatal: never retried.
    """
    pass


class Cancelled(GreenlightError):
    """Exception raised when a caller cancels a retry loop."""
    pass


class RuneError(GreenlightError):
    """Exception raised when a rune is malformed or its restrictions are not met."""
    pass
