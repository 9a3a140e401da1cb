"""
Exception hierarchy for GovJourney.

Only ArtefactError is expected to escape to callers, and only at load time.
Everything raised during a request (tool transport failures, adapter errors
inside tool dispatch) is caught at the strategy boundary and turned into a
tool result the model can react to.
"""

from typing import Optional, Dict, Any


class JourneyError(Exception):
    """Base class for all GovJourney errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


class ArtefactError(JourneyError):
    """A service artefact failed to load or validate."""


class ToolDispatchError(JourneyError):
    """A delegated tool call could not be completed."""


class TransportDisconnectedError(ToolDispatchError):
    """The transport behind a tool dispatcher dropped; a reconnect may help."""


class LLMAdapterError(JourneyError):
    """The language model adapter failed after exhausting its retries."""
