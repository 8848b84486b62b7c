"""
Error types shared by the reading services, the cache and the HTTP layer.
"""
from __future__ import annotations


class BaziGPTError(Exception):
    """Base class for every error raised by this application."""


class ConfigurationError(BaziGPTError):
    """A required setting (usually the upstream API key) is missing."""


class GenerationError(BaziGPTError):
    """Regenerating a reading failed; nothing was written to the cache."""


class UpstreamError(GenerationError):
    """The text-completion call failed or returned no usable content."""


class TimeoutWaitingForPeer(BaziGPTError):
    """Waited the bounded interval for another in-flight regeneration of the same key."""

    def __init__(self, key: str, timeout: float):
        super().__init__(f"Timed out after {timeout:.1f}s waiting for regeneration of {key}")
        self.key = key
        self.timeout = timeout


class StoreError(BaziGPTError):
    """The famous-person store could not be queried."""


class StoreNotConfigured(StoreError):
    """Supabase credentials are missing."""


class UnsafeInputError(BaziGPTError):
    """A free-text question looks like a prompt-injection attempt."""
