from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the roll-up sync.

Built by ``tablesync.config.loader.load_config`` from the validated YAML document.
"""

__all__ = [
    "DestinationConfig",
    "DirectoryConfig",
    "SourceConfig",
    "RetryConfig",
    "ChunkingConfig",
    "SyncConfig",
]


@dataclass(frozen=True)
class DestinationConfig:
    """Summary (dashboard) table that receives one row per entity."""
    path: str  # 集計先ワークブック
    sheet_name: str
    headers_row_index: int = 1
    primary_key: tuple[str, ...] = ()

    @property
    def key(self) -> str | tuple[str, ...]:
        """Scalar key when a single field is configured, else the compound tuple."""
        if len(self.primary_key) == 1:
            return self.primary_key[0]
        return self.primary_key


@dataclass(frozen=True)
class DirectoryConfig:
    """Directory table listing the source documents to process."""
    sheet_name: str
    label_field: str
    locator_field: str
    headers_row_index: int = 1
    path: str | None = None  # None -> destination と同じワークブック


@dataclass(frozen=True)
class SourceConfig:
    """Where the progress table lives inside every source document."""
    sheet_index: int = 0
    sheet_name: str | None = None
    headers_row_index: int = 1


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 2
    backoff_seconds: float = 101.0


@dataclass(frozen=True)
class ChunkingConfig:
    read_chunk_size: int = 5000
    write_chunk_size: int = 1000


@dataclass(frozen=True)
class SyncConfig:
    """Root configuration object for a sync run."""
    source_directory: str
    destination: DestinationConfig
    aggregation: str = "school"
    header_case: str = "camel"
    lock_timeout_seconds: float = 30.0
    directory: DirectoryConfig | None = None
    source: SourceConfig = field(default_factory=SourceConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
