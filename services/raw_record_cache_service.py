"""
Raw Record Cache Service

Supabase-backed persistence of raw provider records, one row per
(agency, external id, provider) in the provider's cache table. A write
always replaces the whole raw tree (upsert on agency_id,external_id).
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from supabase import Client

from config.sync_config import get_config, SourceSyncConfig
from .cache_freshness import utc_now

logger = logging.getLogger(__name__)


@dataclass
class CachedRecord:
    """A raw provider record read back from the cache"""
    provider: str
    agency_id: Any
    external_id: str
    raw_data: Any
    last_fetched: Optional[str] = None
    api_created_at: Optional[str] = None
    api_modified_at: Optional[str] = None


class RawRecordCacheService:
    """Read/write access to the per-provider raw record cache tables"""

    def __init__(self, supabase_client: Client, config: Optional[SourceSyncConfig] = None):
        self.supabase = supabase_client
        self.config = config or get_config()

    def _table(self, provider: str) -> str:
        return self.config.get_provider(provider).cache_table

    async def get_cached(self, agency_id: Any, external_id: str, provider: str) -> Optional[CachedRecord]:
        """
        Get the cached raw record for a provider/property pair.

        Read failures are logged and reported as a cache miss.
        """
        try:
            response = self.supabase.table(self._table(provider)).select('*').eq(
                'agency_id', agency_id
            ).eq('external_id', external_id).limit(1).execute()
        except Exception as e:
            logger.error(f"Error reading {provider} cache for {external_id}: {e}")
            return None

        if not response.data:
            return None

        row = response.data[0]
        return CachedRecord(
            provider=provider,
            agency_id=agency_id,
            external_id=external_id,
            raw_data=row.get('raw_data'),
            last_fetched=row.get('last_fetched'),
            api_created_at=row.get('api_created_at'),
            api_modified_at=row.get('api_modified_at'),
        )

    async def put_cached(
        self,
        agency_id: Any,
        external_id: str,
        provider: str,
        raw_data: Any,
        api_created_at: Optional[str] = None,
        api_modified_at: Optional[str] = None
    ) -> CachedRecord:
        """
        Store a freshly fetched raw record, replacing any previous one.

        Raises whatever the store raises; callers decide whether a failed
        write is fatal.
        """
        now = utc_now().isoformat()
        row: Dict[str, Any] = {
            'agency_id': agency_id,
            'external_id': external_id,
            'raw_data': raw_data,
            'api_created_at': api_created_at,
            'api_modified_at': api_modified_at,
            'last_fetched': now,
            'updated_at': now,
        }

        self.supabase.table(self._table(provider)).upsert(
            row,
            on_conflict='agency_id,external_id'
        ).execute()

        logger.debug(f"Cached {provider} record for {external_id}")

        return CachedRecord(
            provider=provider,
            agency_id=agency_id,
            external_id=external_id,
            raw_data=raw_data,
            last_fetched=now,
            api_created_at=api_created_at,
            api_modified_at=api_modified_at,
        )
