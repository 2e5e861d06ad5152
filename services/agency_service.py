"""
Agency Service

Read access to agency configuration (credentials per provider and the
ordered primary-source preference) and to the list of an agency's
properties used for bulk sync.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from supabase import Client

from config.sync_config import get_config, SourceSyncConfig

logger = logging.getLogger(__name__)


class AgencyNotFound(Exception):
    """Raised when an agency row does not exist"""


@dataclass
class Agency:
    """Agency configuration relevant to source sync"""
    id: Any
    name: str = ""
    unique_key: Optional[str] = None
    primary_source: Optional[str] = None  # comma-separated, ordered
    acquaint_site_prefix: Optional[str] = None
    daft_api_key: Optional[str] = None
    myhome_api_key: Optional[str] = None
    total_properties: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Agency':
        known = {
            'id', 'name', 'unique_key', 'primary_source', 'acquaint_site_prefix',
            'daft_api_key', 'myhome_api_key', 'total_properties',
        }
        return cls(
            id=row.get('id'),
            name=row.get('name') or "",
            unique_key=row.get('unique_key'),
            primary_source=row.get('primary_source'),
            acquaint_site_prefix=row.get('acquaint_site_prefix'),
            daft_api_key=row.get('daft_api_key'),
            myhome_api_key=row.get('myhome_api_key'),
            total_properties=row.get('total_properties') or 0,
            extra={k: v for k, v in row.items() if k not in known},
        )

    def credential_for(self, provider: str, config: Optional[SourceSyncConfig] = None) -> Optional[str]:
        """Credential configured for a provider, or None when blank"""
        settings = (config or get_config()).get_provider(provider)
        value = getattr(self, settings.credential_field, None)
        if value is None:
            value = self.extra.get(settings.credential_field)
        if isinstance(value, str):
            value = value.strip()
        return value or None

    def has_credential(self, provider: str, config: Optional[SourceSyncConfig] = None) -> bool:
        return self.credential_for(provider, config) is not None


class AgencyService:
    """Service for reading agencies and their property references"""

    def __init__(self, supabase_client: Client):
        self.supabase = supabase_client

    async def get_agency(self, agency_id: Any) -> Agency:
        """
        Load a single agency.

        Raises:
            AgencyNotFound: if no agency row matches
        """
        response = self.supabase.table('agencies').select('*').eq('id', agency_id).limit(1).execute()

        if not response.data:
            raise AgencyNotFound(f"Agency not found: {agency_id}")

        return Agency.from_row(response.data[0])

    async def list_agencies(self) -> List[Agency]:
        """Load all agencies ordered by id"""
        response = self.supabase.table('agencies').select('*').order('id').execute()
        return [Agency.from_row(row) for row in (response.data or [])]

    async def list_property_refs(self, agency_id: Any) -> List[str]:
        """
        Get the external ids (ListReff) of all properties of an agency.

        Returns an empty list when the lookup fails, so a bulk sync can
        report the agency as skipped instead of aborting.
        """
        try:
            response = self.supabase.table('properties').select('external_id').eq('agency_id', agency_id).execute()
        except Exception as e:
            logger.error(f"Error listing properties for agency {agency_id}: {e}")
            return []

        refs = []
        for row in response.data or []:
            external_id = row.get('external_id')
            if external_id and external_id not in refs:
                refs.append(str(external_id))
        return refs
