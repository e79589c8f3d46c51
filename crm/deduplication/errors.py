"""Error taxonomy for duplicate detection and merge."""

import uuid
from typing import Optional


class DedupeError(Exception):
    """Base class for all duplicate engine errors."""


class InvalidArgumentError(DedupeError):
    """Bad input detected before any mutation (same ids, bad threshold, malformed selections)."""


class NotFoundError(DedupeError):
    """An id does not resolve to an active record of this tenant and entity type."""


class ConflictError(DedupeError):
    """A record became inactive between the caller's preview and its merge.

    Safe to retry after re-fetching fresh state.
    """


class TransactionFailureError(DedupeError):
    """Infrastructure failure during the multi-table merge; fully rolled back."""

    def __init__(
        self,
        message: str,
        *,
        tenant_id: Optional[uuid.UUID] = None,
        survivor_id: Optional[uuid.UUID] = None,
        loser_id: Optional[uuid.UUID] = None,
        attempted_counts: Optional[dict[str, int]] = None,
    ):
        super().__init__(message)
        self.tenant_id = tenant_id
        self.survivor_id = survivor_id
        self.loser_id = loser_id
        self.attempted_counts = dict(attempted_counts or {})
