"""Public surface for the music search and voice delivery integration."""
from .client import MusicApiClient
from .config import MusicConfig
from .conversation import ConversationStateMachine, IncomingText, TextOutcome, Transport
from .delivery import AudioDeliveryPipeline, DeliveryOutcome, DeliveryStatus
from .errors import (
    CapabilityUnavailable,
    DurationExceeded,
    InvalidSelection,
    MusicError,
    ResolveError,
    UpstreamError,
)
from .resolver import DirectLinkResolver
from .schemas import ResolvedAudio, SongCandidate
from .store import PendingSelection, PendingSelectionStore

__all__ = [
    "AudioDeliveryPipeline",
    "CapabilityUnavailable",
    "ConversationStateMachine",
    "DeliveryOutcome",
    "DeliveryStatus",
    "DirectLinkResolver",
    "DurationExceeded",
    "IncomingText",
    "InvalidSelection",
    "MusicApiClient",
    "MusicConfig",
    "MusicError",
    "PendingSelection",
    "PendingSelectionStore",
    "ResolveError",
    "ResolvedAudio",
    "SongCandidate",
    "TextOutcome",
    "Transport",
    "UpstreamError",
]
