"""Fetch, aggregation and enrichment engine."""

from .aggregator import AggregationResult, CutoffAggregator, QueryCancelled, rank_items
from .enrichment import CollectionNotFoundError, EnrichmentManager, collection_stats
from .library import (
    ChannelExistsError,
    ChannelNotFoundError,
    ChannelSyncResult,
    CollectionLibrary,
    SyncPlan,
)
from .orchestrator import CatalogService
from .pool import BoundedPool, SharedCursor, run_workers
from .refresh import BackgroundRefresher

__all__ = [
    "AggregationResult",
    "BackgroundRefresher",
    "BoundedPool",
    "CatalogService",
    "ChannelExistsError",
    "ChannelNotFoundError",
    "ChannelSyncResult",
    "CollectionLibrary",
    "CollectionNotFoundError",
    "CutoffAggregator",
    "EnrichmentManager",
    "QueryCancelled",
    "SharedCursor",
    "SyncPlan",
    "collection_stats",
    "rank_items",
    "run_workers",
]
