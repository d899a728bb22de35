"""Error kinds raised by the memory subsystem.

"Not found" on read paths is never raised: stores and the controller
return ``None`` or an empty list instead. These exceptions cover the
cases that are fatal to a single operation.
"""


class MemoryStoreError(Exception):
    """Base class for every memory subsystem error."""


class NotFoundError(MemoryStoreError):
    """A write targeted a conversation or message id that does not exist."""


class ReferenceIntegrityError(MemoryStoreError):
    """A message referenced a conversation that does not exist."""


class ValidationError(MemoryStoreError, ValueError):
    """A required field was missing, empty, or out of range."""


class EmbeddingFailure(MemoryStoreError):
    """Generating or saving an embedding failed.

    Raised by providers; the background queue logs it and moves on, so
    callers of ``add_message`` never see it.
    """


class StoreUnavailableError(MemoryStoreError):
    """The underlying database could not be reached."""


class ConfigurationError(MemoryStoreError):
    """Settings do not describe a usable component."""
