"""Record store error taxonomy.

- StoreUnavailable: transient network/timeout failure; retried by verification.
- NotFound: no profile row for the viewer; treated as the unregistered tier.
- MutationRejected: the tier write was refused; fatal to the request.
"""


class RecordStoreError(Exception):
    """Base class for record store failures."""


class StoreUnavailable(RecordStoreError):
    pass


class NotFound(RecordStoreError):
    pass


class MutationRejected(RecordStoreError):
    pass
