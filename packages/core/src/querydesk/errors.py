"""Error taxonomy shared by the query core.

Only ValidationError escapes the execution gateway; the other kinds are
turned into a failed QueryResult there.
"""


class QueryDeskError(Exception):
    """Base class for querydesk errors."""


class ValidationError(QueryDeskError):
    """Malformed request: unknown permission mode, bad template parameters, empty SQL."""


class PermissionDeniedError(QueryDeskError):
    """A write statement was attempted while the permission mode is READ_ONLY."""


class BackendError(QueryDeskError):
    """Connection failure, syntax error or constraint violation reported by the database."""


class CancelledError(BackendError):
    """Execution aborted by timeout or caller cancellation."""
