"""
Value reconciler for DirectoryVerify.

Chooses one canonical value for each field that disagrees across the
directory listings of a provider, and synthesizes the provider's cleaned
record with provenance of every decision.
"""

import logging
from collections import Counter
from typing import Dict, List, Optional, Sequence, Tuple

from directory_verify.config import ReconciliationConfig
from directory_verify.models import (
    EMPTY_MARKER,
    PROVIDER_FIELDS,
    CleanedRecord,
    FieldComparison,
    FieldConflict,
    IdentityGroup,
    ReconciliationOutcome,
    SourceValue,
)

logger = logging.getLogger(__name__)

RULE_TRUSTED_SOURCE = "trusted_source"
RULE_MAJORITY = "majority"
RULE_LONGEST = "longest"


class ValueReconciler:
    """
    Resolves field conflicts with a deterministic ordered policy.

    1. Trusted source: a sufficiently long value from the trusted source wins.
    2. Majority: a value supplied at least twice wins; ties go to the
       source earliest in the precedence list.
    3. Longest: the longest value wins; ties go by source precedence.
    """

    def __init__(self, config: Optional[ReconciliationConfig] = None):
        """
        Initialize value reconciler with configuration.

        Args:
            config: Source precedence and trusted-source settings
        """
        self.config = config or ReconciliationConfig()

        logger.info(f"Initialized ValueReconciler with precedence {self.config.source_precedence}")

    def resolve_field_conflict(self, field_name: str,
                               values: Sequence[SourceValue]) -> Tuple[Optional[str], Optional[str]]:
        """
        Resolve conflicts between multiple field values.

        Args:
            field_name: Name of the field
            values: Trimmed non-empty (source, value) pairs

        Returns:
            Tuple of (chosen value, rule that decided it); (None, None) without values
        """
        if not values:
            return None, None

        trusted_value = self._resolve_trusted_source(values)
        if trusted_value is not None:
            return trusted_value, RULE_TRUSTED_SOURCE

        majority_value = self._resolve_majority(values)
        if majority_value is not None:
            return majority_value, RULE_MAJORITY

        return self._resolve_longest(values), RULE_LONGEST

    def _resolve_trusted_source(self, values: Sequence[SourceValue]) -> Optional[str]:
        """First value from the trusted source, if longer than the minimum length."""
        if not self.config.trusted_source:
            return None

        for pair in values:
            if pair.source == self.config.trusted_source:
                if len(pair.value) > self.config.trusted_min_length:
                    return pair.value
                return None
        return None

    def _resolve_majority(self, values: Sequence[SourceValue]) -> Optional[str]:
        """Most frequent value if supplied at least twice."""
        counts = Counter(pair.value for pair in values)
        top_count = max(counts.values())
        if top_count < 2:
            return None

        best_rank: Dict[str, int] = {}
        for pair in values:
            rank = self.config.precedence_rank(pair.source)
            best_rank[pair.value] = min(best_rank.get(pair.value, rank), rank)

        # Counter keeps first-seen order, so min() falls back to member order
        candidates = [value for value, count in counts.items() if count == top_count]
        return min(candidates, key=lambda value: best_rank[value])

    def _resolve_longest(self, values: Sequence[SourceValue]) -> str:
        """Resolve conflict by choosing the longest value."""
        best = min(values, key=lambda pair: (-len(pair.value), self.config.precedence_rank(pair.source)))
        return best.value

    def reconcile_group(self, group: IdentityGroup,
                        comparisons: Sequence[FieldComparison]) -> ReconciliationOutcome:
        """
        Reconcile one identity group into a cleaned record.

        Args:
            group: Multi-source identity group
            comparisons: Conflict detector output for the group

        Returns:
            ReconciliationOutcome with per-field conflicts and the cleaned record
        """
        base_record = group.records[0]
        canonical_values: Dict[str, Optional[str]] = {}
        conflicts: List[FieldConflict] = []

        for comparison in comparisons:
            if comparison.consistent:
                canonical_values[comparison.field] = comparison.canonical_value
                continue

            resolved_value, rule = self.resolve_field_conflict(comparison.field, comparison.values)
            canonical_values[comparison.field] = resolved_value
            conflicts.append(FieldConflict(
                field=comparison.field,
                values=[
                    SourceValue(source=record.source,
                                value=record.get(comparison.field).strip() or EMPTY_MARKER)
                    for record in group.records
                ],
                corrected_value=resolved_value,
                rule=rule,
            ))

        # Stable identity and credential fields come from the first member
        cleaned = CleanedRecord(**{name: base_record.get(name) for name in PROVIDER_FIELDS})
        corrected_fields = []
        for field_name, value in canonical_values.items():
            base_value = base_record.get(field_name).strip()
            cleaned_value = value or base_record.get(field_name)
            setattr(cleaned, field_name, cleaned_value)
            if cleaned_value.strip() != base_value:
                corrected_fields.append(field_name)
        cleaned.corrected_fields = corrected_fields

        if conflicts:
            logger.debug(f"Reconciled {len(conflicts)} fields for group {group.key}: "
                         f"{[c.field for c in conflicts]}")

        return ReconciliationOutcome(group=group, conflicts=conflicts, cleaned_record=cleaned)

    def get_reconciliation_statistics(self, outcomes: Sequence[ReconciliationOutcome]) -> Dict[str, object]:
        """
        Calculate reconciliation statistics.

        Args:
            outcomes: Reconciled groups

        Returns:
            Dictionary with conflict counts per field and per deciding rule
        """
        field_counts: Counter = Counter()
        rule_counts: Counter = Counter()

        for outcome in outcomes:
            for conflict in outcome.conflicts:
                field_counts[conflict.field] += 1
                rule_counts[conflict.rule] += 1

        return {
            "groups": len(outcomes),
            "inconsistent_groups": sum(1 for o in outcomes if not o.is_consistent),
            "conflicts_by_field": dict(field_counts),
            "conflicts_by_rule": dict(rule_counts),
            "corrected_records": sum(1 for o in outcomes if o.cleaned_record.corrected_fields),
        }
