class SyncError(Exception):
    """Base class for failures reported by the synchronization engine."""


class ValidationError(SyncError):
    pass


class RemoteError(SyncError):
    pass


class SubscriptionError(SyncError):
    pass
