# errors.py
"""
Relay error taxonomy.

- ValidationError: a required field is missing or unusable (HTTP 4xx)
- StoreError: a backing store failed (HTTP 5xx)
    - DurableStoreError: PostgreSQL read/write failed, surfaced to the caller
    - CacheError: Redis failed; read paths degrade, write-backs are swallowed
"""


class RelayError(Exception):
    """Base class for every error raised by the relay."""


class ValidationError(RelayError):
    """A request is missing a required field."""


class StoreError(RelayError):
    """A backing store operation failed."""


class DurableStoreError(StoreError):
    """The durable user store (PostgreSQL) failed."""


class CacheError(StoreError):
    """The volatile store (Redis) failed."""
