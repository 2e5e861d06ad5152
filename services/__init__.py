"""
Multi-Source Listing Reconciliation Services

This package aggregates raw listing records from the internal feed, MyHome,
Acquaint CRM and Daft, caches them per provider, and reconciles every mapped
field so discrepancies between sources can be reviewed.
"""

# Reconciliation core
from .path_resolver import resolve
from .value_equality import ValueEqualityClassifier, are_equal
from .source_availability import is_active, active_providers
from .primary_source_selector import select_primary, parse_primary_sources, preference_list
from .field_reconciliation_service import (
    FieldReconciliationService,
    ReconciledField,
    ReconciledCell,
    Classification,
    CellStatus,
    display_order,
)
from .cache_freshness import is_fresh, should_fetch

# Stores and providers
from .field_mapping_service import FieldMappingService, FieldMapping, MappingStoreUnavailable
from .agency_service import AgencyService, Agency, AgencyNotFound
from .raw_record_cache_service import RawRecordCacheService, CachedRecord
from .provider_clients import ProviderClient, ProviderUnavailable, create_provider_clients
from .provider_aggregator_service import ProviderAggregatorService, SourceRecord, AggregationResult

# Workflows
from .source_sync_orchestrator import (
    SourceSyncOrchestrator,
    PropertyComparison,
    SourceHeader,
    AgencySyncResult,
    FullSyncResult,
    SourceSyncStats,
)
from .scheduler_service import SchedulerService, ScheduleStatus

__all__ = [
    # Reconciliation core
    'resolve',
    'ValueEqualityClassifier',
    'are_equal',
    'is_active',
    'active_providers',
    'select_primary',
    'parse_primary_sources',
    'preference_list',
    'FieldReconciliationService',
    'ReconciledField',
    'ReconciledCell',
    'Classification',
    'CellStatus',
    'display_order',
    'is_fresh',
    'should_fetch',

    # Stores and providers
    'FieldMappingService',
    'FieldMapping',
    'MappingStoreUnavailable',
    'AgencyService',
    'Agency',
    'AgencyNotFound',
    'RawRecordCacheService',
    'CachedRecord',
    'ProviderClient',
    'ProviderUnavailable',
    'create_provider_clients',
    'ProviderAggregatorService',
    'SourceRecord',
    'AggregationResult',

    # Workflows
    'SourceSyncOrchestrator',
    'PropertyComparison',
    'SourceHeader',
    'AgencySyncResult',
    'FullSyncResult',
    'SourceSyncStats',
    'SchedulerService',
    'ScheduleStatus',
]

__version__ = '1.0.0'
