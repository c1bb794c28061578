"""Exceptions raised by the DNS cache."""


class DNSCacheError(Exception):
    """Base class for all cache errors."""


class ValidationError(DNSCacheError, ValueError):
    """An invalid setting (e.g. a non-positive TTL) was rejected."""


class ResolutionError(DNSCacheError):
    """A resolver could not produce results for a key."""

    def __init__(self, key: str, message: str):
        super().__init__(f"{key}: {message}")
        self.key = key
