"""
Field Mapping Service

Read-only access to the field mapping table: one row per canonical field,
holding a dotted path expression per provider (empty = not mapped).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from supabase import Client

from config.sync_config import CANONICAL_PROVIDER_ORDER

logger = logging.getLogger(__name__)


class MappingStoreUnavailable(Exception):
    """The field mapping table could not be read"""


@dataclass
class FieldMapping:
    """Canonical field and its per-provider path expressions"""
    id: Any
    field_name: str
    order: int = 999
    paths: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'FieldMapping':
        field_name = str(row.get('field_name') or '').strip()
        order = row.get('order')
        try:
            order = int(order) if order is not None else 999
        except (TypeError, ValueError):
            logger.warning(f"Field mapping '{field_name}' has invalid order {order!r}, sorting it last")
            order = 999
        return cls(
            id=row.get('id'),
            field_name=field_name,
            order=order,
            paths={provider: (row.get(provider) or '').strip() for provider in CANONICAL_PROVIDER_ORDER},
        )

    def path_for(self, provider: str) -> str:
        return self.paths.get(provider, '')


def sort_mappings(mappings: List[FieldMapping]) -> List[FieldMapping]:
    """Stable sort by order (ties keep store order)"""
    return sorted(mappings, key=lambda m: m.order)


class FieldMappingService:
    """Loads the ordered field mapping table"""

    def __init__(self, supabase_client: Client):
        self.supabase = supabase_client

    async def list_field_mappings(self) -> List[FieldMapping]:
        """
        Get all field mappings in display order.

        Raises:
            MappingStoreUnavailable: if the table cannot be read
        """
        try:
            response = self.supabase.table('field_mappings').select('*').order('order').execute()
        except Exception as e:
            logger.error(f"Error loading field mappings: {e}")
            raise MappingStoreUnavailable(f"Cannot load field mappings: {e}") from e

        rows = response.data
        if rows is None:
            raise MappingStoreUnavailable("Field mapping store returned no data")

        mappings = [FieldMapping.from_row(row) for row in rows]
        mappings = [m for m in mappings if m.field_name]

        seen = set()
        unique = []
        for mapping in sort_mappings(mappings):
            if mapping.field_name in seen:
                logger.warning(f"Duplicate field mapping {mapping.field_name!r} (id {mapping.id}) ignored")
                continue
            seen.add(mapping.field_name)
            unique.append(mapping)

        logger.debug(f"Loaded {len(unique)} field mappings")
        return unique
