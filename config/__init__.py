"""
Configuration module for the multi-source listing sync system.
"""

from .sync_config import (
    SourceSyncConfig,
    ProviderSettings,
    PROPERTYDRIVE,
    MYHOME,
    ACQUAINT_CRM,
    DAFT,
    CANONICAL_PROVIDER_ORDER,
    EXTERNAL_PROVIDERS,
    get_config,
    reload_config,
    set_config,
    build_config,
)
from .external_id import normalize_external_id, strip_site_prefix

__all__ = [
    'SourceSyncConfig',
    'ProviderSettings',
    'PROPERTYDRIVE',
    'MYHOME',
    'ACQUAINT_CRM',
    'DAFT',
    'CANONICAL_PROVIDER_ORDER',
    'EXTERNAL_PROVIDERS',
    'get_config',
    'reload_config',
    'set_config',
    'build_config',
    'normalize_external_id',
    'strip_site_prefix',
]
