"""Error taxonomy shared by the store, the engine and the web layer"""


class CareWatchError(Exception):
    """Base exception for CareWatch errors"""

    pass


class NotFound(CareWatchError):
    """Device or caregiver absent"""

    pass


class PermissionDenied(CareWatchError):
    """Actor role not permitted for the requested transition"""

    pass


class InvalidState(CareWatchError):
    """Transition not defined from the current status"""

    pass


class WriteConflict(InvalidState):
    """Conditional write rejected: status moved since it was observed (not retried)"""

    pass


class StoreUnavailable(CareWatchError):
    """Transient connectivity failure (retryable by the caller)"""

    pass
