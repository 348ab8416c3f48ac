"""
Audit logging and review decisions for DirectoryVerify.

Records every upload, validation run, review decision, edit, consistency
check and export in the audit log, and applies human review decisions to
flagged records through the record status state machine.
"""

import logging
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional

from directory_verify.models import AuditEntry, ProviderRecord, RecordStatus, UserContext
from directory_verify.storage.record_store import RecordStore

logger = logging.getLogger(__name__)

AUDIT_ACTIONS = (
    "upload",
    "validation_run",
    "record_approved",
    "record_rejected",
    "record_edited",
    "consistency_check",
    "export",
    "settings_changed",
)


class AuditLogger:
    """
    Writes audit entries through the storage collaborator.

    Attributes every entry to the acting user when one is supplied.
    """

    def __init__(self, store: RecordStore):
        """
        Initialize audit logger.

        Args:
            store: Storage collaborator holding the audit log
        """
        self.store = store

    def log_action(self, action: str, description: str, user: Optional[UserContext] = None,
                   batch_id: Optional[str] = None, provider_id: Optional[str] = None,
                   changes: Optional[Dict[str, Any]] = None) -> AuditEntry:
        """
        Record an audit entry.

        Args:
            action: One of AUDIT_ACTIONS
            description: Human readable description
            user: Acting user
            batch_id: Related validation batch
            provider_id: Related provider record
            changes: Structured change details

        Returns:
            Stored audit entry
        """
        if action not in AUDIT_ACTIONS:
            raise ValueError(f"Unknown audit action: {action}")

        user = user or UserContext()
        entry = AuditEntry(
            action=action,
            description=description,
            batch_id=batch_id,
            provider_id=provider_id,
            user_email=user.email,
            user_role=user.role,
            changes=changes or {},
        )
        stored = self.store.create_audit_entry(entry)

        logger.info(f"Audit [{action}] {description}")
        return stored

    def get_entries(self, action: Optional[str] = None, limit: Optional[int] = None) -> List[AuditEntry]:
        return self.store.list_audit_entries(action=action, limit=limit)

    def calculate_audit_metrics(self) -> Dict[str, Any]:
        """
        Calculate audit activity metrics.

        Returns:
            Dictionary with per-action counts and review totals
        """
        counts = Counter(entry.action for entry in self.store.list_audit_entries())

        return {
            "total_entries": sum(counts.values()),
            "action_counts": {action: counts.get(action, 0) for action in AUDIT_ACTIONS},
            "validation_runs": counts.get("validation_run", 0),
            "reviews_completed": counts.get("record_approved", 0) + counts.get("record_rejected", 0),
            "edits": counts.get("record_edited", 0),
            "exports": counts.get("export", 0),
        }


class ReviewService:
    """
    Applies human review decisions to scored records.

    Approve and reject are terminal; edits change field values only and
    leave the record status as it is.
    """

    def __init__(self, store: RecordStore, audit_logger: Optional[AuditLogger] = None):
        """
        Initialize review service.

        Args:
            store: Storage collaborator
            audit_logger: Audit logger; one over the same store is created if omitted
        """
        self.store = store
        self.audit_logger = audit_logger or AuditLogger(store)

    def review_queue(self, limit: Optional[int] = None) -> List[ProviderRecord]:
        """Flagged records, lowest confidence first."""
        return self.store.filter_records(status=RecordStatus.FLAGGED.value,
                                         order_by="confidence_score", limit=limit)

    def approve(self, record_id: str, edits: Optional[Mapping[str, str]] = None,
                notes: str = "", user: Optional[UserContext] = None) -> ProviderRecord:
        """
        Approve a record, optionally saving reviewer edits with the decision.

        Raises:
            InvalidStatusTransition: If the record is pending or already reviewed
        """
        record = self.store.get_record(record_id)
        previous = record.status
        record.transition_to(RecordStatus.APPROVED)
        if edits:
            record.apply_changes(edits)
        self._stamp_review(record, notes, user)

        stored = self.store.update_record(record)
        self.audit_logger.log_action(
            "record_approved",
            f"Approved provider: {record.name}",
            user=user,
            provider_id=record.id,
            changes={"from": previous.value, "to": RecordStatus.APPROVED.value},
        )
        return stored

    def reject(self, record_id: str, notes: str = "",
               user: Optional[UserContext] = None) -> ProviderRecord:
        """
        Reject a record.

        Raises:
            InvalidStatusTransition: If the record is pending or already reviewed
        """
        record = self.store.get_record(record_id)
        previous = record.status
        record.transition_to(RecordStatus.REJECTED)
        self._stamp_review(record, notes, user)

        stored = self.store.update_record(record)
        self.audit_logger.log_action(
            "record_rejected",
            f"Rejected provider: {record.name}",
            user=user,
            provider_id=record.id,
            changes={"from": previous.value, "to": RecordStatus.REJECTED.value},
        )
        return stored

    def edit(self, record_id: str, changes: Mapping[str, str],
             user: Optional[UserContext] = None) -> ProviderRecord:
        """
        Save field edits without touching the record status.

        Args:
            record_id: Record to edit
            changes: Field name to new value
            user: Acting user

        Returns:
            Updated record
        """
        record = self.store.get_record(record_id)
        edited_fields = record.apply_changes(changes)
        if not edited_fields:
            return record

        stored = self.store.update_record(record)
        self.audit_logger.log_action(
            "record_edited",
            f"Edited provider: {record.name}",
            user=user,
            provider_id=record.id,
            changes={"edited_fields": edited_fields},
        )
        return stored

    def apply_suggestion(self, record_id: str, field_name: str,
                         user: Optional[UserContext] = None) -> ProviderRecord:
        """
        Copy an enrichment suggestion into the record field.

        Raises:
            KeyError: If the record has no suggestion for the field
        """
        record = self.store.get_record(record_id)
        if field_name not in record.suggestions:
            raise KeyError(f"No suggestion for field '{field_name}' on record {record_id}")
        return self.edit(record_id, {field_name: record.suggestions[field_name]}, user=user)

    @staticmethod
    def _stamp_review(record: ProviderRecord, notes: str, user: Optional[UserContext]):
        record.reviewed_by = user.email if user else None
        record.review_notes = notes or None
