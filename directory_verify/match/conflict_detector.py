"""
Conflict detector for DirectoryVerify.

Compares the comparison fields of an identity group across its sources.
Values are trimmed, empty values ignored and the remaining values compared
case-insensitively.
"""

import logging
from typing import List, Optional, Sequence

from directory_verify.models import COMPARISON_FIELDS, FieldComparison, IdentityGroup, SourceValue

logger = logging.getLogger(__name__)


def normalize_value(value: Optional[str]) -> str:
    """Comparison form of a field value."""
    return (value or "").strip().lower()


class ConflictDetector:
    """
    Detects field-level disagreement within an identity group.

    A field with a single distinct normalized value is consistent and that
    value becomes canonical directly; two or more distinct values make the
    field inconsistent and it is handed to the value reconciler.
    """

    def __init__(self, comparison_fields: Optional[Sequence[str]] = None):
        """
        Initialize conflict detector.

        Args:
            comparison_fields: Fields compared across sources
        """
        self.comparison_fields = list(comparison_fields or COMPARISON_FIELDS)

    def collect_values(self, group: IdentityGroup, field_name: str) -> List[SourceValue]:
        """Trimmed non-empty (source, value) pairs in member order."""
        pairs = []
        for record in group.records:
            value = record.get(field_name).strip()
            if value:
                pairs.append(SourceValue(source=record.source, value=value))
        return pairs

    def compare_field(self, group: IdentityGroup, field_name: str) -> FieldComparison:
        """
        Compare one field across the group.

        Args:
            group: Identity group
            field_name: Comparison field

        Returns:
            FieldComparison; canonical_value is set only for consistent fields
        """
        pairs = self.collect_values(group, field_name)
        distinct = {normalize_value(pair.value) for pair in pairs}

        if len(distinct) <= 1:
            canonical = pairs[0].value if pairs else None
            return FieldComparison(field=field_name, values=pairs, consistent=True,
                                   canonical_value=canonical)

        return FieldComparison(field=field_name, values=pairs, consistent=False)

    def detect(self, group: IdentityGroup) -> List[FieldComparison]:
        """
        Compare every comparison field of a group.

        Args:
            group: Identity group

        Returns:
            One FieldComparison per comparison field, in configured order
        """
        comparisons = [self.compare_field(group, field_name) for field_name in self.comparison_fields]

        inconsistent = [c.field for c in comparisons if not c.consistent]
        if inconsistent:
            logger.debug(f"Group {group.key}: inconsistent fields {inconsistent}")

        return comparisons
