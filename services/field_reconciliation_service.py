"""
Field Reconciliation Service

For every mapped field, gathers the value each active provider holds for a
property, decides whether the providers agree, and tags each provider's value:

- primary:            the authoritative value (see primary_source_selector)
- unique:             no other present provider shares this value
- shared-with-others: differs from primary but agrees with another provider
- matches-primary:    agrees with primary, nothing to flag

Fields no active provider has a value for are omitted. Created/Last Modified
style date fields are informational only and never flagged.

This is a pure computation over an immutable snapshot of raw records: the
same snapshot always yields the same rows.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from config.sync_config import get_config, SourceSyncConfig
from .agency_service import Agency
from .date_values import to_iso
from .field_mapping_service import FieldMapping
from .path_resolver import resolve
from .primary_source_selector import has_value, preference_list, select_primary
from .provider_aggregator_service import SourceRecord
from .source_availability import is_active
from .value_equality import ValueEqualityClassifier

logger = logging.getLogger(__name__)


class Classification(str, Enum):
    """Highlighting class of a present provider value"""
    PRIMARY = 'primary'
    UNIQUE = 'unique'
    SHARED_WITH_OTHERS = 'shared-with-others'
    MATCHES_PRIMARY = 'matches-primary'


class CellStatus(str, Enum):
    """Why a cell does or does not carry a value"""
    PRESENT = 'present'
    ABSENT = 'absent'  # provider active, no value for this field
    INACTIVE = 'inactive'  # provider excluded from reconciliation


@dataclass
class ReconciledCell:
    """One provider's value for one field"""
    provider: str
    status: CellStatus
    value: Any = None
    classification: Optional[Classification] = None
    is_primary: bool = False
    display_value: Optional[str] = None

    @property
    def highlighted(self) -> bool:
        return self.classification in (Classification.UNIQUE, Classification.SHARED_WITH_OTHERS)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'provider': self.provider,
            'status': self.status.value,
            'value': self.value,
            'classification': self.classification.value if self.classification else None,
            'isPrimary': self.is_primary,
            'display_value': self.display_value,
        }


@dataclass
class ReconciledField:
    """One output row: every provider's value for a canonical field"""
    field_name: str
    mapping_id: Any = None
    cells: List[ReconciledCell] = field(default_factory=list)
    primary_provider: Optional[str] = None
    all_equal: bool = True
    is_date_field: bool = False

    def cell(self, provider: str) -> Optional[ReconciledCell]:
        for cell in self.cells:
            if cell.provider == provider:
                return cell
        return None

    @property
    def present_cells(self) -> List[ReconciledCell]:
        return [cell for cell in self.cells if cell.status == CellStatus.PRESENT]

    @property
    def has_discrepancy(self) -> bool:
        return any(cell.highlighted for cell in self.cells)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'field_name': self.field_name,
            'primary_provider': self.primary_provider,
            'all_equal': self.all_equal,
            'is_date_field': self.is_date_field,
            'cells': [cell.to_dict() for cell in self.cells],
        }


def display_order(
    agency_primary_source: Optional[str],
    property_primary_override: Optional[str] = None,
    config: Optional[SourceSyncConfig] = None
) -> List[str]:
    """
    Provider column order for presentation: canonical order with the first
    preferred provider moved to the front. Never affects classification.
    """
    config = config or get_config()
    order = list(config.canonical_order)
    preferred = preference_list(agency_primary_source, property_primary_override, config)
    if preferred and preferred[0] in order:
        order.remove(preferred[0])
        order.insert(0, preferred[0])
    return order


class FieldReconciliationService:
    """Reconciles mapped fields across provider raw records"""

    def __init__(self, config: Optional[SourceSyncConfig] = None):
        self.config = config or get_config()
        self.equality = ValueEqualityClassifier(self.config)

    def reconcile(
        self,
        mappings: List[FieldMapping],
        agency: Agency,
        sources: Dict[str, SourceRecord],
        property_primary_override: Optional[str] = None
    ) -> List[ReconciledField]:
        """
        Reconcile every mapped field for one property.

        Args:
            mappings: Field mappings in stored order
            agency: Agency owning the property (credentials, primary_source)
            sources: Provider snapshot from the aggregator
            property_primary_override: Optional per-property primary_source

        Returns:
            One ReconciledField per field with at least one present value,
            in mapping order
        """
        active = {
            provider for provider in self.config.canonical_order
            if is_active(provider, agency, sources.get(provider), self.config)
        }

        rows = []
        for mapping in mappings:
            row = self.reconcile_field(mapping, agency, sources, active, property_primary_override)
            if row is not None:
                rows.append(row)

        logger.debug(f"Reconciled {len(rows)} of {len(mappings)} fields "
                     f"({sum(1 for r in rows if r.has_discrepancy)} with discrepancies)")
        return rows

    def reconcile_field(
        self,
        mapping: FieldMapping,
        agency: Agency,
        sources: Dict[str, SourceRecord],
        active: set,
        property_primary_override: Optional[str] = None
    ) -> Optional[ReconciledField]:
        """Reconcile a single field; None when no active provider has a value"""
        field_name = mapping.field_name
        values: Dict[str, Any] = {}
        for provider in self.config.canonical_order:
            if provider in active:
                values[provider] = self._resolve_value(sources.get(provider), mapping.path_for(provider), field_name)

        present: List[Tuple[str, Any]] = [
            (provider, value) for provider, value in values.items() if has_value(value)
        ]
        if not present:
            return None

        is_date_field = self.config.is_date_field(field_name)
        primary = select_primary(
            field_name, present, agency.primary_source, property_primary_override, self.config
        )
        primary_value = values[primary]

        all_equal = True
        if not is_date_field and len(present) > 1:
            all_equal = self._all_equal(field_name, present)

        row = ReconciledField(
            field_name=field_name,
            mapping_id=mapping.id,
            primary_provider=primary,
            all_equal=all_equal,
            is_date_field=is_date_field,
        )

        for provider in self.config.canonical_order:
            if provider not in active:
                row.cells.append(ReconciledCell(provider=provider, status=CellStatus.INACTIVE))
                continue

            value = values[provider]
            if not has_value(value):
                row.cells.append(ReconciledCell(provider=provider, status=CellStatus.ABSENT))
                continue

            if provider == primary:
                classification = Classification.PRIMARY
            elif is_date_field or all_equal:
                classification = Classification.MATCHES_PRIMARY
            else:
                classification = self._classify(field_name, provider, value, primary, primary_value, present)

            row.cells.append(ReconciledCell(
                provider=provider,
                status=CellStatus.PRESENT,
                value=value,
                classification=classification,
                is_primary=provider == primary,
                display_value=self._display_value(value, is_date_field),
            ))

        return row

    def _resolve_value(self, source: Optional[SourceRecord], path: str, field_name: str) -> Any:
        if source is None or source.data is None or not path:
            return None
        try:
            return resolve(source.data, path)
        except Exception as e:
            logger.debug(f"Could not resolve {field_name!r} at {path!r} for {source.provider}: {e}")
            return None

    def _all_equal(self, field_name: str, present: List[Tuple[str, Any]]) -> bool:
        for i in range(len(present)):
            for j in range(i + 1, len(present)):
                if not self.equality.are_equal(field_name, present[i][1], present[j][1]):
                    return False
        return True

    def _classify(
        self,
        field_name: str,
        provider: str,
        value: Any,
        primary: str,
        primary_value: Any,
        present: List[Tuple[str, Any]]
    ) -> Classification:
        """Classify a non-primary value when the providers disagree"""
        match_count = sum(
            1 for _, other in present if self.equality.are_equal(field_name, value, other)
        )
        if match_count == 1:
            return Classification.UNIQUE

        matches_primary = self.equality.are_equal(field_name, value, primary_value)
        matches_others = any(
            other_provider not in (primary, provider) and self.equality.are_equal(field_name, value, other)
            for other_provider, other in present
        )
        if not matches_primary and matches_others:
            return Classification.SHARED_WITH_OTHERS

        return Classification.MATCHES_PRIMARY

    @staticmethod
    def _display_value(value: Any, is_date_field: bool) -> Optional[str]:
        if is_date_field:
            return to_iso(value) or str(value)
        if isinstance(value, (dict, list)):
            return None
        return str(value)
