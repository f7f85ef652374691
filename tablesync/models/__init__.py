"""Domain models for the tablesync roll-up tool."""

from .config_models import (
    ChunkingConfig,
    DestinationConfig,
    DirectoryConfig,
    RetryConfig,
    SourceConfig,
    SyncConfig,
)
from .cursor import BatchCursor
from .outcome import OutcomeStatus, ReconcileOutcome
from .record import Group, PrimaryKey, Record
from .source_item import SourceItem

__all__ = [
    # Configuration models
    "ChunkingConfig",
    "DestinationConfig",
    "DirectoryConfig",
    "RetryConfig",
    "SourceConfig",
    "SyncConfig",
    # Processing models
    "BatchCursor",
    "Group",
    "OutcomeStatus",
    "PrimaryKey",
    "ReconcileOutcome",
    "Record",
    "SourceItem",
]
