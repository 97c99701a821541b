"""Error taxonomy for the memory subsystem.

Lookups for things that do not exist (unknown run, unknown session, unknown
memory id) are not errors: they return ``None`` or an empty list.
"""

from __future__ import annotations


class MemorySystemError(Exception):
    """Base class for every error raised by aura_memory."""


class ConfigurationUnavailable(MemorySystemError):
    """No backing store is configured.

    The offline stores never raise this; they log and degrade. It is raised
    only by callers that cannot do anything useful without persistence.
    """


class MemoryValidationError(MemorySystemError, ValueError):
    """A record failed validation at the store boundary."""


class StorageError(MemorySystemError):
    """A backing store call failed. Safe to retry."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed: {detail}")
