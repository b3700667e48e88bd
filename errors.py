"""Error taxonomy shared by the core operations and the tool boundary."""


class MemoryServiceError(Exception):
    """Base class for failures reported to callers as success=false."""

    code = "error"


class ValidationError(MemoryServiceError):
    """Missing or malformed argument."""

    code = "validation_error"


class DimensionMismatchError(ValidationError):
    """Vectors of different lengths were compared."""


class NotFoundError(MemoryServiceError):
    """A referenced memory or relation does not exist."""

    code = "not_found"


class ConflictError(MemoryServiceError):
    """The write would violate a uniqueness rule."""

    code = "conflict"


class StoreError(MemoryServiceError):
    """The underlying store failed."""

    code = "store_error"
