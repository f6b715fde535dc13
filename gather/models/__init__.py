"""Capture data models package."""

from .capture import (
    OBSERVED_EVENTS,
    NETWORK_LOADING_FINISHED,
    NETWORK_GET_RESPONSE_BODY,
    Event,
    EventLog,
    BodyRecord,
    FetchResult,
    OutputTarget,
    ArtifactPaths,
    CaptureResult,
    CaptureStatus,
    HarMode,
)

__all__ = [
    # Protocol method names
    'OBSERVED_EVENTS',
    'NETWORK_LOADING_FINISHED',
    'NETWORK_GET_RESPONSE_BODY',

    # Event log
    'Event',
    'EventLog',
    'BodyRecord',
    'FetchResult',

    # Outputs and results
    'OutputTarget',
    'ArtifactPaths',
    'CaptureResult',
    'CaptureStatus',
    'HarMode',
]
