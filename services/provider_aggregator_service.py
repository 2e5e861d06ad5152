"""
Provider Record Aggregator

Assembles the {provider -> raw record | unavailable} snapshot for one
property. For each provider with a configured credential the cache is
consulted first; stale or force-refreshed records are re-fetched, with all
provider fetches for the property running concurrently and each bounded by
its own timeout. A failing provider only marks that provider unavailable.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from config.sync_config import get_config, SourceSyncConfig, PROPERTYDRIVE
from config.external_id import normalize_external_id
from .agency_service import Agency
from .cache_freshness import is_fresh, utc_now
from .date_values import extract_api_date
from .provider_clients import ProviderClient, ProviderUnavailable
from .raw_record_cache_service import RawRecordCacheService, CachedRecord

logger = logging.getLogger(__name__)


@dataclass
class SourceRecord:
    """One provider's contribution to a property snapshot"""
    provider: str
    external_id: str
    data: Any = None
    error: Optional[str] = None
    not_found: bool = False
    from_cache: bool = False
    last_fetched: Optional[str] = None
    api_created_at: Optional[str] = None
    api_modified_at: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.error is None and self.data is not None


@dataclass
class AggregationResult:
    """Snapshot of all providers' raw records for one property"""
    agency_id: Any
    external_id: str
    sources: Dict[str, SourceRecord] = field(default_factory=dict)
    fetched_count: int = 0
    cached_count: int = 0
    duration_seconds: float = 0.0

    @property
    def errors(self) -> Dict[str, str]:
        return {name: record.error for name, record in self.sources.items() if record.error}


class ProviderAggregatorService:
    """
    Drives provider fetches for a property, subject to the cache freshness gate.
    """

    def __init__(
        self,
        cache_service: RawRecordCacheService,
        clients: Dict[str, ProviderClient],
        config: Optional[SourceSyncConfig] = None
    ):
        self.cache_service = cache_service
        self.clients = clients
        self.config = config or get_config()

    async def aggregate_property(
        self,
        agency: Agency,
        list_reff: str,
        force_refresh: bool = False,
        property_record: Optional[Dict[str, Any]] = None
    ) -> AggregationResult:
        """
        Build the per-provider snapshot for a property.

        Args:
            agency: Agency owning the property
            list_reff: Canonical external id (ListReff)
            force_refresh: Re-fetch every provider regardless of cache age
            property_record: Canonical internal record, if the caller already has it

        Returns:
            AggregationResult with one SourceRecord per provider
        """
        start_time = time.time()
        result = AggregationResult(agency_id=agency.id, external_id=list_reff)

        tasks = []
        for provider in self.config.canonical_order:
            external_id = normalize_external_id(provider, list_reff, agency.acquaint_site_prefix)

            if provider == PROPERTYDRIVE and property_record is not None:
                tasks.append(self._given_record(provider, external_id, property_record))
                continue

            credential = agency.credential_for(provider, self.config)
            if not credential:
                display = self.config.get_provider(provider).display_name
                tasks.append(self._skipped(provider, external_id, f"No {display} credential"))
                continue

            tasks.append(self._load_source(agency, provider, external_id, credential, force_refresh))

        # _load_source converts every failure, so gather never raises here
        records = await asyncio.gather(*tasks)

        for record in records:
            result.sources[record.provider] = record
            if record.available and record.from_cache:
                result.cached_count += 1
            elif record.available:
                result.fetched_count += 1

        result.duration_seconds = time.time() - start_time

        if result.errors:
            logger.info(f"Aggregated {list_reff} for agency {agency.id} with unavailable sources: {result.errors}")
        else:
            logger.debug(f"Aggregated {list_reff} for agency {agency.id}: "
                         f"{result.fetched_count} fetched, {result.cached_count} cached")

        return result

    async def _given_record(self, provider: str, external_id: str, data: Dict[str, Any]) -> SourceRecord:
        settings = self.config.get_provider(provider)
        return SourceRecord(
            provider=provider,
            external_id=external_id,
            data=data,
            api_created_at=extract_api_date(data, settings.created_date_fields),
            api_modified_at=extract_api_date(data, settings.modified_date_fields),
        )

    async def _skipped(self, provider: str, external_id: str, reason: str) -> SourceRecord:
        return SourceRecord(provider=provider, external_id=external_id, error=reason)

    async def _load_source(
        self,
        agency: Agency,
        provider: str,
        external_id: str,
        credential: str,
        force_refresh: bool
    ) -> SourceRecord:
        """Serve a provider record from cache, or fetch and cache it"""
        if not force_refresh:
            cached = await self.cache_service.get_cached(agency.id, external_id, provider)
            if cached is not None and is_fresh(cached.last_fetched, self.config.cache_expiry_hours):
                return self._from_cache(cached)

        try:
            data = await self._fetch(provider, credential, external_id, force_refresh)
        except ProviderUnavailable as e:
            logger.warning(f"[{provider.upper()}] {external_id} unavailable: {e.reason}")
            return SourceRecord(provider=provider, external_id=external_id,
                                error=e.reason, not_found=e.not_found)
        except asyncio.TimeoutError:
            reason = f"Timed out after {self.config.fetch_timeout_seconds:g}s"
            logger.warning(f"[{provider.upper()}] {external_id} unavailable: {reason}")
            return SourceRecord(provider=provider, external_id=external_id, error=reason)
        except Exception as e:
            logger.error(f"[{provider.upper()}] Unexpected error fetching {external_id}: {e}")
            return SourceRecord(provider=provider, external_id=external_id, error=str(e) or type(e).__name__)

        settings = self.config.get_provider(provider)
        api_created_at = extract_api_date(data, settings.created_date_fields)
        api_modified_at = extract_api_date(data, settings.modified_date_fields)

        record = SourceRecord(
            provider=provider,
            external_id=external_id,
            data=data,
            last_fetched=utc_now().isoformat(),
            api_created_at=api_created_at,
            api_modified_at=api_modified_at,
        )

        try:
            stored = await self.cache_service.put_cached(
                agency.id, external_id, provider, data,
                api_created_at=api_created_at,
                api_modified_at=api_modified_at,
            )
            record.last_fetched = stored.last_fetched
        except Exception as e:
            # The fresh record is still served for this request
            logger.error(f"Error caching {provider} record for {external_id}: {e}")

        return record

    async def _fetch(
        self,
        provider: str,
        credential: str,
        external_id: str,
        force_refresh: bool = False
    ) -> Any:
        client = self.clients.get(provider)
        if client is None:
            raise ProviderUnavailable(provider, "No client configured")

        return await asyncio.wait_for(
            asyncio.to_thread(client.fetch, credential, external_id, force_refresh),
            timeout=self.config.fetch_timeout_seconds
        )

    @staticmethod
    def _from_cache(cached: CachedRecord) -> SourceRecord:
        return SourceRecord(
            provider=cached.provider,
            external_id=cached.external_id,
            data=cached.raw_data,
            from_cache=True,
            last_fetched=cached.last_fetched,
            api_created_at=cached.api_created_at,
            api_modified_at=cached.api_modified_at,
        )
