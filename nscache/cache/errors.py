"""
Error taxonomy for the namespaced cache.

Every error raised by the cache derives from CacheError. Store failures keep
the original valkey exception as ``__cause__``.
"""


class CacheError(Exception):
    """Base exception for all cache errors."""
    pass


class ValidationError(CacheError, ValueError):
    """Caller supplied a wrong-shaped argument. Raised before any store access."""
    pass


class StoreError(CacheError):
    """The store rejected or failed a command, including failed batches."""
    pass


class StoreConnectionError(StoreError):
    """Custom exception for Valkey connection issues."""
    pass


class CodecError(CacheError, ValueError):
    """JSON encode/decode failure on a whole value."""
    pass


def require_sequence(value, name: str) -> None:
    """Raise ValidationError unless value is a list or tuple."""
    if not isinstance(value, (list, tuple)):
        raise ValidationError(
            f"{name} must be a list or tuple, got {type(value).__name__}"
        )
