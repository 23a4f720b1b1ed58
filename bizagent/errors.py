"""
Error classification for the HTTP surface.

Only infrastructure failures (data store unreachable) surface as an error
status; they are detected by type or by known message fragments so the raw
message (which may hold a connection string) is never returned.
"""

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError

INFRA_ERROR_MARKERS = (
    "could not connect",
    "connection refused",
    "connection reset",
    "server closed the connection",
    "unable to open database",
    "database is locked",
    "too many connections",
    "timeout expired",
    "name or service not known",
    "econnrefused",
    "can't reach database",
)

SERVICE_UNAVAILABLE_DETAIL = "Service temporarily unavailable"
INTERNAL_ERROR_DETAIL = "Failed to process chat message"


class BusinessNotFoundError(LookupError):
    """The business id in the request does not exist."""


def is_infrastructure_error(exc: BaseException) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError)):
        return True
    text = str(exc).lower()
    return any(marker in text for marker in INFRA_ERROR_MARKERS)
