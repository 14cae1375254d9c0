"""Indexer error taxonomy.

Transient errors leave the watermark untouched and are retried; structural
errors abort the block range and must reach an operator; input errors are
returned to the caller without touching ledger state.
"""


class IndexerError(Exception):
    """Base class for all indexer errors."""


class ChainSourceError(IndexerError):
    """Transient failure talking to the chain log source."""


class StructuralError(IndexerError):
    """Fatal inconsistency; the current block range is rolled back."""


class LedgerConsistencyError(StructuralError):
    """Derived ledger disagrees with the event stream (e.g. balance underflow)."""


class MalformedEventError(StructuralError):
    """A log that is needed for a ledger mutation could not be decoded."""


class InvalidTransferError(StructuralError):
    """A transfer the token contract itself would have rejected."""


class ReorgRollbackError(StructuralError):
    """Rolling the ledger back to a common ancestor failed."""


class InvalidArgumentError(IndexerError, ValueError):
    """Caller supplied an invalid argument."""


class NotFoundError(IndexerError, LookupError):
    """Requested entity does not exist in the ledger."""
