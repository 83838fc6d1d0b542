"""Client for a remote node signer and scheduler.

Provides:
- Signer: derives the node id and answers challenges from a 32-byte seed
- TlsConfig: client TLS identity and trust root
- Scheduler: schedules, registers and recovers nodes
- Credentials: device credentials issued by the scheduler
"""

__version__ = "0.1.0"

from glclient.credentials import Credentials
from glclient.errors import (
    AuthError,
    Cancelled,
    CredentialsError,
    GreenlightError,
    HsmdLoadError,
    InvalidSeed,
    RuneError,
    SchedulerConnectionError,
    SchedulerError,
    ServiceUnavailable,
    TlsError,
)
from glclient.network import Network
from glclient.retry import call_with_retries
from glclient.scheduler import RegistrationResult, ScheduleResult, Scheduler
from glclient.signer import Signer
from glclient.tls import TlsConfig

__all__ = [
    "AuthError",
    "Cancelled",
    "Credentials",
    "CredentialsError",
    "GreenlightError",
    "HsmdLoadError",
    "InvalidSeed",
    "Network",
    "RegistrationResult",
    "RuneError",
    "ScheduleResult",
    "Scheduler",
    "SchedulerConnectionError",
    "SchedulerError",
    "ServiceUnavailable",
    "Signer",
    "TlsConfig",
    "call_with_retries",
]
