"""
Source Sync Orchestrator for Multi-Source Listing Reconciliation

Coordinates the request-level and bulk workflows:

- compare_property: load mappings + agency, aggregate provider records for
  one property, reconcile every mapped field
- sync_agency: refresh the raw record cache for all properties of an agency,
  one property at a time with provider fan-out per property
- sync_all_agencies: sync_agency for every agency, paced to stay below
  upstream rate limits, recorded in sync_runs
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from supabase import Client

from config.sync_config import get_config, SourceSyncConfig
from .agency_service import Agency, AgencyService
from .field_mapping_service import FieldMappingService
from .field_reconciliation_service import FieldReconciliationService, ReconciledField, display_order
from .primary_source_selector import preference_list
from .provider_aggregator_service import ProviderAggregatorService
from .provider_clients import ProviderClient, create_provider_clients
from .raw_record_cache_service import RawRecordCacheService
from .source_availability import is_active

logger = logging.getLogger(__name__)


@dataclass
class SourceHeader:
    """Per-provider metadata shown alongside a comparison"""
    provider: str
    title: str
    active: bool
    error: Optional[str] = None
    is_preferred: bool = False
    from_cache: bool = False
    last_fetched: Optional[str] = None
    api_created_at: Optional[str] = None
    api_modified_at: Optional[str] = None


@dataclass
class PropertyComparison:
    """Reconciled view of one property across all providers"""
    agency_id: Any
    external_id: str
    rows: List[ReconciledField] = field(default_factory=list)
    sources: List[SourceHeader] = field(default_factory=list)
    display_order: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def errors(self) -> Dict[str, str]:
        return {s.provider: s.error for s in self.sources if s.error}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'agency_id': self.agency_id,
            'external_id': self.external_id,
            'display_order': self.display_order,
            'sources': [vars(source) for source in self.sources],
            'rows': [row.to_dict() for row in self.rows],
            'errors': self.errors,
        }


@dataclass
class SourceSyncStats:
    """Counters for one provider during a bulk sync"""
    synced: int = 0
    cached: int = 0
    errors: int = 0
    skipped: Optional[str] = None


@dataclass
class AgencySyncResult:
    """Result of syncing one agency"""
    agency_id: Any
    agency_name: str
    success: bool = False
    properties_processed: int = 0
    sources: Dict[str, SourceSyncStats] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0


@dataclass
class FullSyncResult:
    """Result of syncing every agency"""
    success: bool = False
    agencies: List[AgencySyncResult] = field(default_factory=list)
    properties_processed: int = 0
    errors: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    sync_run_id: Optional[str] = None


class SourceSyncOrchestrator:
    """
    Main orchestrator for provider aggregation and reconciliation.
    """

    def __init__(
        self,
        supabase_client: Client,
        config: Optional[SourceSyncConfig] = None,
        clients: Optional[Dict[str, ProviderClient]] = None,
        api_token: Optional[str] = None
    ):
        self.supabase = supabase_client
        self.config = config or get_config()

        # Initialize services
        self.agency_service = AgencyService(supabase_client)
        self.mapping_service = FieldMappingService(supabase_client)
        self.cache_service = RawRecordCacheService(supabase_client, self.config)
        self.aggregator = ProviderAggregatorService(
            self.cache_service,
            clients if clients is not None else create_provider_clients(self.config, api_token),
            self.config
        )
        self.reconciler = FieldReconciliationService(self.config)

    async def compare_property(
        self,
        agency_id: Any,
        external_id: str,
        force_refresh: bool = False,
        primary_source_override: Optional[str] = None,
        property_record: Optional[Dict[str, Any]] = None
    ) -> PropertyComparison:
        """
        Build the reconciled comparison for one property.

        Args:
            agency_id: Agency owning the property
            external_id: Canonical ListReff
            force_refresh: Bypass the cache for every provider
            primary_source_override: Per-property primary_source, wins over the agency's
            property_record: Canonical internal record, if already loaded

        Returns:
            PropertyComparison with one row per reconciled field

        Raises:
            MappingStoreUnavailable: if field mappings cannot be loaded
            AgencyNotFound: if the agency does not exist
        """
        start_time = time.time()

        # Without mappings there is nothing to reconcile
        mappings = await self.mapping_service.list_field_mappings()
        agency = await self.agency_service.get_agency(agency_id)

        aggregation = await self.aggregator.aggregate_property(
            agency, external_id,
            force_refresh=force_refresh,
            property_record=property_record
        )

        rows = self.reconciler.reconcile(
            mappings, agency, aggregation.sources, primary_source_override
        )

        preferred = preference_list(agency.primary_source, primary_source_override, self.config)
        comparison = PropertyComparison(
            agency_id=agency.id,
            external_id=external_id,
            rows=rows,
            display_order=display_order(agency.primary_source, primary_source_override, self.config),
        )

        for provider in self.config.canonical_order:
            record = aggregation.sources.get(provider)
            comparison.sources.append(SourceHeader(
                provider=provider,
                title=self.config.get_provider(provider).display_name,
                active=is_active(provider, agency, record, self.config),
                error=record.error if record else "Not fetched",
                is_preferred=provider in preferred,
                from_cache=record.from_cache if record else False,
                last_fetched=record.last_fetched if record else None,
                api_created_at=record.api_created_at if record else None,
                api_modified_at=record.api_modified_at if record else None,
            ))

        comparison.duration_seconds = time.time() - start_time

        logger.info(f"Compared {external_id} for agency {agency.id}: {len(rows)} fields, "
                    f"{sum(1 for r in rows if r.has_discrepancy)} with discrepancies "
                    f"({comparison.duration_seconds:.1f}s)")

        return comparison

    async def sync_agency(
        self,
        agency: Union[Agency, Any],
        force_refresh: bool = False,
        record_run: bool = True
    ) -> AgencySyncResult:
        """
        Refresh cached provider records for all properties of an agency.

        Properties are processed one after another; the providers of each
        property are fetched concurrently.

        Args:
            agency: Agency instance or agency id
            force_refresh: Re-fetch even fresh cache entries
            record_run: Record the run in sync_runs

        Returns:
            AgencySyncResult with per-provider counters
        """
        if not isinstance(agency, Agency):
            agency = await self.agency_service.get_agency(agency)

        start_time = time.time()
        result = AgencySyncResult(agency_id=agency.id, agency_name=agency.name)
        result.sources = {provider: SourceSyncStats() for provider in self.config.canonical_order}
        sync_run_id = await self._create_sync_run('agency', agency.id) if record_run else None

        logger.info(f"Starting sync for agency {agency.name} ({agency.id})")

        try:
            for provider, stats in result.sources.items():
                if not agency.has_credential(provider, self.config):
                    stats.skipped = f"No {self.config.get_provider(provider).display_name} credential"

            property_refs = await self.agency_service.list_property_refs(agency.id)
            if not property_refs:
                logger.warning(f"No properties found for agency {agency.name}")
                for stats in result.sources.values():
                    stats.skipped = stats.skipped or 'No properties'
                result.success = True
                return result

            logger.info(f"Found {len(property_refs)} properties to sync for {agency.name}")

            for list_reff in property_refs:
                aggregation = await self.aggregator.aggregate_property(
                    agency, list_reff, force_refresh=force_refresh
                )

                for provider, record in aggregation.sources.items():
                    stats = result.sources[provider]
                    if record.available and record.from_cache:
                        stats.cached += 1
                    elif record.available:
                        stats.synced += 1
                    elif not stats.skipped:
                        stats.errors += 1

                result.properties_processed += 1
                await self._pace(result.properties_processed, len(property_refs))

            result.success = True

        except Exception as e:
            error_msg = f"Error syncing agency {agency.name}: {str(e)}"
            logger.error(error_msg)
            result.errors.append(error_msg)

        finally:
            result.duration_seconds = time.time() - start_time

            if sync_run_id:
                await self._update_sync_run(
                    sync_run_id, result.success, result.properties_processed,
                    result.sources, result.errors, result.duration_seconds
                )

            logger.info(f"Agency {agency.name} synced in {result.duration_seconds:.1f}s: " +
                        ", ".join(f"{p} {s.synced} synced/{s.cached} cached/{s.errors} errors"
                                  for p, s in result.sources.items() if not s.skipped))

        return result

    async def sync_all_agencies(self, force_refresh: bool = False) -> FullSyncResult:
        """
        Sync every agency in turn.

        Returns:
            FullSyncResult with one AgencySyncResult per agency
        """
        logger.info(f"=" * 60)
        logger.info(f"Starting full sync of all agencies")
        logger.info(f"=" * 60)

        start_time = time.time()
        result = FullSyncResult()
        result.sync_run_id = await self._create_sync_run('full')
        totals: Dict[str, SourceSyncStats] = {p: SourceSyncStats() for p in self.config.canonical_order}

        try:
            agencies = await self.agency_service.list_agencies()
            logger.info(f"Found {len(agencies)} agencies")

            for index, agency in enumerate(agencies):
                agency_result = await self.sync_agency(agency, force_refresh=force_refresh, record_run=False)
                result.agencies.append(agency_result)
                result.properties_processed += agency_result.properties_processed
                result.errors.extend(agency_result.errors)

                for provider, stats in agency_result.sources.items():
                    totals[provider].synced += stats.synced
                    totals[provider].cached += stats.cached
                    totals[provider].errors += stats.errors

                if index < len(agencies) - 1:
                    await asyncio.sleep(self.config.delay_between_agencies)

            result.success = True

        except Exception as e:
            error_msg = f"Error in full sync: {str(e)}"
            logger.error(error_msg)
            result.errors.append(error_msg)

        finally:
            result.duration_seconds = time.time() - start_time

            if result.sync_run_id:
                await self._update_sync_run(
                    result.sync_run_id, result.success, result.properties_processed,
                    totals, result.errors, result.duration_seconds
                )

            logger.info(f"Full sync completed in {result.duration_seconds:.1f}s: "
                        f"{len(result.agencies)} agencies, {result.properties_processed} properties")

        return result

    async def _pace(self, processed: int, total: int):
        """Delay after each property, and a longer pause every N properties"""
        if processed >= total:
            return

        await asyncio.sleep(self.config.delay_between_properties)

        every = self.config.pause_every_properties
        if every > 0 and processed % every == 0:
            logger.info(f"Progress: {processed}/{total} properties, "
                        f"pausing {self.config.pause_seconds:g}s")
            await asyncio.sleep(self.config.pause_seconds)

    async def _create_sync_run(self, run_type: str, agency_id: Any = None) -> Optional[str]:
        """Create a new sync run record"""
        try:
            response = self.supabase.table('sync_runs').insert({
                'run_type': run_type,
                'agency_id': agency_id,
                'status': 'running',
                'started_at': datetime.utcnow().isoformat()
            }).execute()

            return response.data[0]['id']
        except Exception as e:
            logger.error(f"Error creating sync run: {e}")
            return None

    async def _update_sync_run(
        self,
        sync_run_id: str,
        success: bool,
        properties_processed: int,
        sources: Dict[str, SourceSyncStats],
        errors: List[str],
        duration_seconds: float
    ):
        """Update sync run record with results"""
        try:
            update_data = {
                'status': 'completed' if success else 'failed',
                'completed_at': datetime.utcnow().isoformat(),
                'properties_processed': properties_processed,
                'records_fetched': sum(s.synced for s in sources.values()),
                'records_cached': sum(s.cached for s in sources.values()),
                'source_errors': sum(s.errors for s in sources.values()),
                'error_count': len(errors),
                'error_summary': '; '.join(errors[:5]) if errors else None,
                'execution_time_ms': int(duration_seconds * 1000)
            }

            self.supabase.table('sync_runs').update(
                update_data
            ).eq('id', sync_run_id).execute()

        except Exception as e:
            logger.error(f"Error updating sync run: {e}")

    async def get_last_sync_run(self, run_type: str = 'full') -> Optional[Dict]:
        """Get the last completed run of a given type"""
        try:
            response = self.supabase.table('sync_runs').select('*').eq(
                'run_type', run_type
            ).eq('status', 'completed').order('started_at', desc=True).limit(1).execute()

            if response.data:
                return response.data[0]
            return None
        except Exception as e:
            logger.error(f"Error getting last sync run: {e}")
            return None

    async def get_sync_history(self, run_type: Optional[str] = None, limit: int = 10) -> List[Dict]:
        """Recent sync runs, newest first"""
        try:
            query = self.supabase.table('sync_runs').select('*')

            if run_type:
                query = query.eq('run_type', run_type)

            response = query.order('started_at', desc=True).limit(limit).execute()

            return response.data or []

        except Exception as e:
            logger.error(f"Error getting sync history: {e}")
            return []
