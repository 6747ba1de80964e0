"""Exception hierarchy shared by the discovery and sync pipeline."""

from __future__ import annotations

from typing import Optional


class BftAgentError(RuntimeError):
    """Base class for every error raised by the agent."""


class ConfigurationError(BftAgentError):
    """A required installation value is missing or malformed."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class DiscoveryFailure(BftAgentError):
    """No request carrying a site identity was seen while loading the club page."""


class UpstreamError(BftAgentError):
    """The Hapana API answered with a non-2xx status, success=false, or not at all."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EnrichmentFailure(BftAgentError):
    """A class description could not be fetched; callers fall back locally."""


class SyncItemFailure(BftAgentError):
    """Writing one record to the store failed; the sync carries on."""

    def __init__(self, model: str, name: str, message: str):
        super().__init__(message)
        self.model = model
        self.name = name


class StoreError(BftAgentError):
    """The host record store rejected a request."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidTransition(BftAgentError):
    """An installation was asked to move to a state it cannot reach."""
