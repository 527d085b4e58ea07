"""
Client-side transcript reconciliation.

Pure reducers (``merge``), stream decoding, render coalescing and the
inactivity tracker that snapshots sessions into memory.
"""

from classroom_tutor.client.activity import SessionMemoryTracker, session_turns
from classroom_tutor.client.engine import (
    ASSESSMENT_THANK_YOU,
    SAFETY_PLACEHOLDER_TEXT,
    ReconciliationEngine,
)
from classroom_tutor.client.stream import (
    CONNECTION_LOST_MESSAGE,
    INTERRUPTED_SUFFIX,
    FrameCoalescer,
    SSEDecoder,
    StreamFrame,
    StreamSession,
    StreamStatus,
)
from classroom_tutor.client.transcript import MergePolicy, is_local, merge, remove, replace

__all__ = [
    "ReconciliationEngine",
    "SAFETY_PLACEHOLDER_TEXT",
    "ASSESSMENT_THANK_YOU",
    "SessionMemoryTracker",
    "session_turns",
    "SSEDecoder",
    "StreamFrame",
    "StreamSession",
    "StreamStatus",
    "FrameCoalescer",
    "INTERRUPTED_SUFFIX",
    "CONNECTION_LOST_MESSAGE",
    "MergePolicy",
    "merge",
    "remove",
    "replace",
    "is_local",
]
