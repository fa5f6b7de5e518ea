"""Exceptions raised by qora.

Fetch and mutation failures are not exceptions of their own: the final error
of a fetcher or mutator is stored in a ``Failure`` / ``MutationFailure``
state. ``fetch_once`` re-raises it, ``mutate`` never does.
"""


class QoraError(Exception):
    """Base class for all qora errors."""


class InvalidKeyError(QoraError, TypeError):
    """A query key has an unsupported root or part type."""


class DisabledQueryError(QoraError, RuntimeError):
    """``fetch_once`` was called for a query whose options disable it."""


class UseAfterDisposeError(QoraError, RuntimeError):
    """A client or mutation controller was used after ``dispose()``."""
