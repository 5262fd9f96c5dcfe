"""Bidirectional task/calendar synchronization.

Keeps a local task collection and one calendar consistent, each side being
editable independently.

## Components

1. **FieldMapper**: translates tasks to event resources and back
2. **ChangeClassifier**: decides per task and per event what a pass must do
3. **ConflictResolver**: tracks conflicts until a side is chosen for each
4. **ChangeApplicator**: performs remote mutations, deferring failures
5. **SyncSession**: orchestrates the above, one pass at a time

## Sync Pass

1. Fetch the event window
2. Classify tasks against events
3. Resolve conflicts (policy or caller), then classify again
4. Apply creates, updates and deletes, then imports and merges
5. Record the completion time
"""

from task_calendar.sync.applicator import ApplyReport, ChangeApplicator, PendingChangeQueue
from task_calendar.sync.classifier import ChangeClassifier
from task_calendar.sync.mapper import FieldMapper
from task_calendar.sync.metadata import (
    InMemorySyncMetadataStore,
    SyncMetadata,
    SyncMetadataStore,
)
from task_calendar.sync.resolver import (
    ConflictPolicy,
    ConflictResolver,
    Resolution,
    keep_local_policy,
    keep_remote_policy,
    newest_wins_policy,
    resolve_conflict,
)
from task_calendar.sync.session import (
    SyncListener,
    SyncResult,
    SyncSession,
    SyncState,
    SyncStatus,
)

__all__ = [
    # Mapping and classification
    "FieldMapper",
    "ChangeClassifier",
    # Conflicts
    "ConflictPolicy",
    "ConflictResolver",
    "Resolution",
    "resolve_conflict",
    "keep_local_policy",
    "keep_remote_policy",
    "newest_wins_policy",
    # Application
    "ApplyReport",
    "ChangeApplicator",
    "PendingChangeQueue",
    # Metadata
    "SyncMetadata",
    "SyncMetadataStore",
    "InMemorySyncMetadataStore",
    # Session
    "SyncSession",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    "SyncListener",
]
