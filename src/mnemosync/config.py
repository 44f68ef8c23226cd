"""Application configuration dataclasses.

Frozen dataclasses with defaults for each subsystem. Values can be
overridden at construction time; the agent sharing table is loaded
separately from JSON (see ``mnemosync.sharing.profiles``).
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field


def _default_ttl_minutes() -> dict[str, int]:
    return {
        "critical": 365 * 24 * 60,
        "high": 7 * 24 * 60,
        "medium": 24 * 60,
        "low": 4 * 60,
        "temporary": 30,
    }


def _default_decay_rates() -> dict[str, float]:
    return {
        "critical": 0.001,
        "high": 0.005,
        "medium": 0.01,
        "low": 0.02,
        "temporary": 0.05,
    }


def _default_initial_strength() -> dict[str, float]:
    return {
        "critical": 1.0,
        "high": 0.8,
        "medium": 0.6,
        "low": 0.4,
        "temporary": 0.2,
    }


@dataclass(frozen=True)
class ShortTermConfig:
    """Expiry table and paging for the short-term buffer."""

    # Minutes until expiry, keyed by importance value
    ttl_minutes: dict[str, int] = field(default_factory=_default_ttl_minutes)
    cleanup_page_size: int = 200


@dataclass(frozen=True)
class ConsolidationConfig:
    """Tuneable parameters for the consolidation pipeline."""

    max_batch_size: int = 100
    near_duplicate_threshold: float = 0.95
    embedding_duplicate_threshold: float = 0.95
    reinforce_threshold: float = 0.8
    reinforce_candidate_limit: int = 200
    summary_length: int = 200
    max_keywords: int = 10
    embed_created: bool = True
    # Group near-duplicates by embedding similarity as well as by tokens
    embedding_grouping: bool = False
    # Base strength of a new long-term memory, per importance tier
    initial_strength: dict[str, float] = field(
        default_factory=_default_initial_strength
    )
    decay_rates: dict[str, float] = field(default_factory=_default_decay_rates)


@dataclass(frozen=True)
class EmbeddingConfig:
    """Embedding provider settings used by the similarity kernel."""

    provider: str = "offline"
    model: str = "text-embedding-3-small"
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    dimensions: int = 1536
    batch_size: int = 100
    max_retries: int = 3
    retry_backoff_seconds: float = 0.5
    inter_chunk_delay_seconds: float = 0.1
    timeout_seconds: float = 30.0
    max_input_chars: int = 8191


@dataclass(frozen=True)
class SimilarityConfig:
    """Thresholds and windows for similarity search and clustering."""

    min_similarity: float = 0.7
    search_limit: int = 20
    similar_limit: int = 10
    candidate_window: int = 500
    cluster_threshold: float = 0.8
    max_cluster_window: int = 200
    cluster_confidence: float = 0.9
    related_confidence: float = 0.8


@dataclass(frozen=True)
class MaintenanceConfig:
    """Decay rates, floors and retention windows for the sweep."""

    association_decay_rate: float = 0.01
    association_floor: float = 0.1
    weak_floor: float = 0.2
    session_retention_days: int = 30
    page_size: int = 200
    interval_seconds: float = 24 * 60 * 60


@dataclass(frozen=True)
class SharingConfig:
    """Paging for sharing, sync and pool queries."""

    sync_page_size: int = 500
    differential_window_hours: int = 24
    shared_memories_limit: int = 50


@dataclass(frozen=True)
class AuditConfig:
    """Settings for the JSONL audit logger."""

    file_path: str = "mnemosync_audit.jsonl"
    enabled: bool = True


@dataclass(frozen=True)
class StorageConfig:
    """Backend selection for records and associations."""

    backend: str = "memory"
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "mnemosync"
    neo4j_url: str | None = None
