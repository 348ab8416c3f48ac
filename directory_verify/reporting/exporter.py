"""
Directory exporter for DirectoryVerify.

Writes the cleaned provider directory as CSV, in two modes: the validated
directory (approved and validated records with their confidence score) and
the reconciled directory (cleaned records from a consistency check with the
fields that were corrected). Also computes before/after directory statistics.
"""

import csv
import logging
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd

from directory_verify.audit.audit_logger import AuditLogger
from directory_verify.models import (
    EMPTY_MARKER,
    PROVIDER_FIELDS,
    CleanedRecord,
    ProviderRecord,
    ReconciliationReport,
    RecordStatus,
    UserContext,
)
from directory_verify.storage.record_store import RecordStore

logger = logging.getLogger(__name__)

EXPORT_HEADERS = [
    "NPI", "Name", "Specialty", "Organization", "Phone", "Email", "Website",
    "Address", "City", "State", "ZIP", "License Number",
]
EXPORT_FIELDS = PROVIDER_FIELDS[:12]

CONFIDENCE_HEADER = "Confidence Score"
CORRECTED_HEADER = "Corrected Fields"

EXPORTABLE_STATUSES = (RecordStatus.APPROVED, RecordStatus.VALIDATED)

# Fields shown in the before/after diff of a record
DIFF_FIELDS = ("phone", "email", "address", "city", "state", "zip")


def write_csv(rows: List[List[str]], headers: List[str], output_path: str) -> str:
    """Write rows with every field quoted."""
    output_file = Path(output_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    df = pd.DataFrame(rows, columns=headers, dtype=str)
    df.to_csv(output_file, index=False, quoting=csv.QUOTE_ALL)
    return str(output_file)


class DirectoryExporter:
    """
    Exports cleaned provider directories and reports on them.
    """

    def __init__(self, store: RecordStore, audit_logger: Optional[AuditLogger] = None,
                 user: Optional[UserContext] = None):
        """
        Initialize exporter.

        Args:
            store: Storage collaborator
            audit_logger: Audit logger for export entries; none are written if omitted
            user: Identity attached to audit entries
        """
        self.store = store
        self.audit_logger = audit_logger
        self.user = user

    def get_exportable_records(self, source: Optional[str] = None) -> List[ProviderRecord]:
        """Approved and validated records, optionally from one source."""
        return [
            record for record in self.store.list_records()
            if record.status in EXPORTABLE_STATUSES
            and (source is None or record.source == source)
        ]

    def export_validated(self, output_path: str, source: Optional[str] = None) -> int:
        """
        Export the validated directory.

        Args:
            output_path: CSV file to write
            source: Optional source filter

        Returns:
            Number of exported records
        """
        records = self.get_exportable_records(source)
        rows = [
            [record.get(name) for name in EXPORT_FIELDS]
            + ["" if record.confidence_score is None else str(record.confidence_score)]
            for record in records
        ]

        try:
            write_csv(rows, EXPORT_HEADERS + [CONFIDENCE_HEADER], output_path)
        except OSError as e:
            logger.error(f"Failed to export validated directory to {output_path}: {e}")
            raise

        self._log_export(f"Exported {len(records)} cleaned provider records", output_path,
                         {"mode": "validated", "records": len(records), "source": source})
        logger.info(f"Exported {len(records)} validated records to {output_path}")
        return len(records)

    def export_reconciled(self, report: Union[ReconciliationReport, Sequence[CleanedRecord]],
                          output_path: str) -> int:
        """
        Export the reconciled directory.

        Args:
            report: Reconciliation report or its cleaned records
            output_path: CSV file to write

        Returns:
            Number of exported records
        """
        cleaned_records = report.cleaned_records if isinstance(report, ReconciliationReport) else list(report)
        rows = [
            [getattr(cleaned, name) or "" for name in EXPORT_FIELDS]
            + ["; ".join(cleaned.corrected_fields)]
            for cleaned in cleaned_records
        ]

        try:
            write_csv(rows, EXPORT_HEADERS + [CORRECTED_HEADER], output_path)
        except OSError as e:
            logger.error(f"Failed to export reconciled directory to {output_path}: {e}")
            raise

        self._log_export(f"Exported {len(cleaned_records)} reconciled provider records", output_path,
                         {"mode": "reconciled", "records": len(cleaned_records)})
        logger.info(f"Exported {len(cleaned_records)} reconciled records to {output_path}")
        return len(cleaned_records)

    def _log_export(self, description: str, output_path: str, changes: Dict[str, Any]):
        if self.audit_logger is None:
            return
        changes = dict(changes, file=str(output_path))
        self.audit_logger.log_action("export", description, user=self.user, changes=changes)

    @staticmethod
    def get_changed_fields(record: ProviderRecord) -> List[Dict[str, str]]:
        """
        Diff a record's current values against its submitted snapshot.

        Returns:
            One ``{field, before, after}`` entry per changed non-empty field
        """
        changes = []
        for field_name in DIFF_FIELDS:
            before = record.original_data.get(field_name, "") or ""
            after = record.get(field_name)
            if after and after != before:
                changes.append({
                    "field": field_name,
                    "before": before or EMPTY_MARKER,
                    "after": after,
                })
        return changes

    def get_directory_statistics(self, source: Optional[str] = None) -> Dict[str, Any]:
        """
        Calculate before/after directory statistics.

        Args:
            source: Optional source filter for the cleaned directory

        Returns:
            Dictionary of directory statistics
        """
        records = self.store.list_records()
        cleaned = [
            record for record in records
            if record.status in EXPORTABLE_STATUSES
            and (source is None or record.source == source)
        ]

        avg_confidence = 0
        if cleaned:
            avg_confidence = round(sum(r.confidence_score or 0 for r in cleaned) / len(cleaned))

        return {
            "original_records": len(records),
            "cleaned_records": len(cleaned),
            "avg_confidence_after": avg_confidence,
            "records_improved": sum(1 for r in records if r.suggestions),
            "records_with_changes": sum(1 for r in cleaned if self.get_changed_fields(r)),
            "by_source": dict(Counter(r.source for r in records)),
            "by_status": dict(Counter(r.status.value for r in records)),
        }
