"""
Source Availability Evaluator

The canonical internal provider is always active. An external provider is
active for a property iff the agency has its credential configured and the
fetch for this property did not come back unavailable.
"""

from typing import Dict, List, Optional

from config.sync_config import get_config, SourceSyncConfig, PROPERTYDRIVE
from .agency_service import Agency
from .provider_aggregator_service import SourceRecord


def is_active(
    provider: str,
    agency: Agency,
    source: Optional[SourceRecord],
    config: Optional[SourceSyncConfig] = None
) -> bool:
    if provider == PROPERTYDRIVE:
        return True
    if not agency.has_credential(provider, config):
        return False
    return source is not None and source.error is None


def active_providers(
    agency: Agency,
    sources: Dict[str, SourceRecord],
    config: Optional[SourceSyncConfig] = None
) -> List[str]:
    """Active providers in canonical order"""
    config = config or get_config()
    return [
        provider for provider in config.canonical_order
        if is_active(provider, agency, sources.get(provider), config)
    ]
