"""
Error taxonomy for the sync engine.

Transient failures (API errors, conflicts, network) are left as whatever the
client raised and retried through the rate-limited queue. Only failures that
retrying cannot fix are modelled here as PermanentSyncError.
"""


class SyncError(Exception):
    """Base class for errors raised by the sync engine itself."""


class PermanentSyncError(SyncError):
    """Retrying the work item will not help; drop it and wait for a new event."""


class MalformedAnnotationError(PermanentSyncError):
    """A control annotation on the upstream object could not be decoded or applied."""

    def __init__(self, annotation: str, message: str):
        self.annotation = annotation
        super().__init__(f"malformed annotation '{annotation}': {message}")


class MutatorError(SyncError):
    """A mutator failed for a reason that may clear up on retry."""

    def __init__(self, mutator: str, message: str):
        self.mutator = mutator
        super().__init__(f"error from {mutator} mutator: {message}")
