"""
Cross-source consistency checker for DirectoryVerify.

Runs identity grouping, conflict detection and value reconciliation over a
point-in-time snapshot of stored records and produces the reconciliation
report with cleaned records.
"""

import logging
import time
from typing import TYPE_CHECKING, Iterable, List, Optional

from directory_verify.blocking.identity_resolver import IdentityIndex, IdentityResolver
from directory_verify.config import ReconciliationConfig
from directory_verify.match.conflict_detector import ConflictDetector
from directory_verify.merge.value_reconciler import ValueReconciler
from directory_verify.models import (
    Inconsistency,
    ProviderRecord,
    ReconciliationOutcome,
    ReconciliationReport,
    UserContext,
)

if TYPE_CHECKING:
    from directory_verify.audit.audit_logger import AuditLogger
    from directory_verify.storage.record_store import RecordStore

logger = logging.getLogger(__name__)


class ConsistencyChecker:
    """
    Reconciles providers listed in more than one directory source.

    Works on an in-memory snapshot without locking; running it twice over
    the same records yields the same report.
    """

    def __init__(self, config: Optional[ReconciliationConfig] = None):
        """
        Initialize consistency checker with configuration.

        Args:
            config: Reconciliation configuration
        """
        self.config = config or ReconciliationConfig()
        self.resolver = IdentityResolver()
        self.detector = ConflictDetector(self.config.comparison_fields)
        self.reconciler = ValueReconciler(self.config)

        logger.info("Initialized ConsistencyChecker")

    def _reconcile_index(self, index: IdentityIndex) -> List[ReconciliationOutcome]:
        outcomes = []
        for group in index.multi_source_groups():
            comparisons = self.detector.detect(group)
            outcomes.append(self.reconciler.reconcile_group(group, comparisons))
        return outcomes

    def run(self, records: Iterable[ProviderRecord]) -> ReconciliationReport:
        """
        Build the reconciliation report for a record snapshot.

        Args:
            records: Provider records

        Returns:
            ReconciliationReport
        """
        start_time = time.time()
        snapshot = list(records)

        index = self.resolver.build_index(snapshot)
        outcomes = self._reconcile_index(index)

        inconsistencies = []
        for outcome in outcomes:
            if outcome.is_consistent:
                continue
            base_record = outcome.group.records[0]
            inconsistencies.append(Inconsistency(
                provider_name=base_record.name,
                npi=base_record.npi,
                sources=[record.source for record in outcome.group.records],
                inconsistent_fields=outcome.conflicts,
                cleaned_record=outcome.cleaned_record,
            ))

        report = ReconciliationReport(
            total_checked=len(outcomes),
            inconsistent_count=len(inconsistencies),
            consistent_count=len(outcomes) - len(inconsistencies),
            inconsistencies=inconsistencies,
            cleaned_records=[outcome.cleaned_record for outcome in outcomes],
            unmatched_count=len(index.unmatched),
        )

        stats = self.reconciler.get_reconciliation_statistics(outcomes)
        logger.info(f"Consistency check over {len(snapshot)} records: "
                    f"{report.total_checked} multi-source providers, "
                    f"{report.inconsistent_count} inconsistent, "
                    f"conflicts by rule {stats['conflicts_by_rule']} "
                    f"in {time.time() - start_time:.2f} seconds")
        return report

    def run_from_store(self, store: "RecordStore",
                       audit_logger: Optional["AuditLogger"] = None,
                       user: Optional[UserContext] = None) -> ReconciliationReport:
        """
        Build the reconciliation report from the records currently stored.

        Args:
            store: Storage collaborator
            audit_logger: Optional audit logger for a consistency_check entry
            user: Identity attached to the audit entry

        Returns:
            ReconciliationReport
        """
        report = self.run(store.list_records())

        if audit_logger is not None:
            audit_logger.log_action(
                "consistency_check",
                f"Consistency check: {report.inconsistent_count} of "
                f"{report.total_checked} multi-source providers inconsistent",
                user=user,
                changes={"consistency_score": report.consistency_score},
            )

        return report
