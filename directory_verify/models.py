"""
Domain models for DirectoryVerify.

Provider records, fixed-schema validation results, the record status state
machine, reconciliation outcomes and the batch/audit entities exchanged with
the storage collaborator.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from directory_verify.errors import InvalidStatusTransition

# Provider fields in export/column order
PROVIDER_FIELDS = (
    "npi", "name", "specialty", "organization",
    "phone", "email", "website",
    "address", "city", "state", "zip",
    "license_number", "license_state",
)

# Fields compared across sources during reconciliation
COMPARISON_FIELDS = ("phone", "email", "address", "city", "state", "zip", "website")

EMPTY_MARKER = "(empty)"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


class Source(str, Enum):
    """Directory a record was published in."""
    WEB = "web"
    MOBILE = "mobile"
    PRINT = "print"


class RecordStatus(str, Enum):
    """
    Record lifecycle.

    PENDING is replaced exactly once by the scorer (VALIDATED or FLAGGED);
    a human review then moves the record to APPROVED or REJECTED, both terminal.
    """
    PENDING = "pending"
    VALIDATED = "validated"
    FLAGGED = "flagged"
    APPROVED = "approved"
    REJECTED = "rejected"


ALLOWED_TRANSITIONS = {
    RecordStatus.PENDING: {RecordStatus.VALIDATED, RecordStatus.FLAGGED},
    RecordStatus.VALIDATED: {RecordStatus.APPROVED, RecordStatus.REJECTED},
    RecordStatus.FLAGGED: {RecordStatus.APPROVED, RecordStatus.REJECTED},
    RecordStatus.APPROVED: set(),
    RecordStatus.REJECTED: set(),
}


class FieldOutcome(str, Enum):
    """Tri-state outcome of a single field check."""
    VALID = "valid"
    INVALID = "invalid"
    NOT_APPLICABLE = "not_applicable"


@dataclass
class ValidationResults:
    """
    Per-field validation outcomes.

    ``None`` means the field was not evaluated, which is distinct from an
    explicit INVALID outcome. Unevaluated fields are omitted from ``to_dict``.
    """
    phone: Optional[FieldOutcome] = None
    email: Optional[FieldOutcome] = None
    website: Optional[FieldOutcome] = None
    address: Optional[FieldOutcome] = None
    zip: Optional[FieldOutcome] = None
    license_number: Optional[FieldOutcome] = None
    npi: Optional[FieldOutcome] = None

    FIELDS = ("phone", "email", "website", "address", "zip", "license_number", "npi")

    def to_dict(self) -> Dict[str, str]:
        return {
            name: getattr(self, name).value
            for name in self.FIELDS
            if getattr(self, name) is not None
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, str]]) -> "ValidationResults":
        data = data or {}
        return cls(**{
            name: FieldOutcome(data[name])
            for name in cls.FIELDS
            if data.get(name) is not None
        })

    def evaluated_fields(self) -> List[str]:
        return [name for name in self.FIELDS if getattr(self, name) is not None]


@dataclass
class ProviderRecord:
    """
    One provider entry from one directory source.

    ``original_data`` is a read-only snapshot of the row as submitted.
    """
    npi: str = ""
    name: str = ""
    specialty: str = ""
    organization: str = ""
    phone: str = ""
    email: str = ""
    website: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    license_number: str = ""
    license_state: str = ""
    source: str = ""
    id: str = field(default_factory=new_id)
    batch_id: Optional[str] = None
    status: RecordStatus = RecordStatus.PENDING
    confidence_score: Optional[int] = None
    validation_results: ValidationResults = field(default_factory=ValidationResults)
    suggestions: Dict[str, str] = field(default_factory=dict)
    original_data: Mapping[str, str] = field(default_factory=dict)
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None
    last_validated: Optional[str] = None
    created_at: str = field(default_factory=utc_now)

    def __post_init__(self):
        self.status = RecordStatus(self.status)
        self.original_data = MappingProxyType(dict(self.original_data))

    def get(self, field_name: str) -> str:
        """Return a provider field value, ``""`` when unset."""
        return getattr(self, field_name, "") or ""

    def field_values(self) -> Dict[str, str]:
        return {name: self.get(name) for name in PROVIDER_FIELDS}

    def transition_to(self, new_status: RecordStatus):
        """
        Move the record along the status state machine.

        Args:
            new_status: Requested status

        Raises:
            InvalidStatusTransition: If the move is not allowed from the current status
        """
        new_status = RecordStatus(new_status)
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStatusTransition(self.status.value, new_status.value, record_id=self.id)
        self.status = new_status

    def apply_changes(self, changes: Mapping[str, str]) -> List[str]:
        """
        Overwrite provider fields. Status is left untouched.

        Returns:
            Names of the fields whose value actually changed
        """
        unknown = set(changes) - set(PROVIDER_FIELDS)
        if unknown:
            raise ValueError(f"Unknown provider fields: {sorted(unknown)}")

        changed = []
        for name, value in changes.items():
            value = "" if value is None else str(value)
            if self.get(name) != value:
                setattr(self, name, value)
                changed.append(name)
        return changed

    def to_dict(self) -> Dict[str, Any]:
        data = self.field_values()
        data.update({
            "id": self.id,
            "source": self.source,
            "batch_id": self.batch_id,
            "status": self.status.value,
            "confidence_score": self.confidence_score,
            "validation_results": self.validation_results.to_dict(),
            "suggestions": dict(self.suggestions),
            "original_data": dict(self.original_data),
            "reviewed_by": self.reviewed_by,
            "review_notes": self.review_notes,
            "last_validated": self.last_validated,
            "created_at": self.created_at,
        })
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProviderRecord":
        kwargs = {name: data.get(name) or "" for name in PROVIDER_FIELDS}
        kwargs.update({
            "source": data.get("source") or "",
            "batch_id": data.get("batch_id"),
            "status": data.get("status") or RecordStatus.PENDING,
            "confidence_score": data.get("confidence_score"),
            "validation_results": ValidationResults.from_dict(data.get("validation_results")),
            "suggestions": dict(data.get("suggestions") or {}),
            "original_data": dict(data.get("original_data") or {}),
            "reviewed_by": data.get("reviewed_by"),
            "review_notes": data.get("review_notes"),
            "last_validated": data.get("last_validated"),
        })
        if data.get("id"):
            kwargs["id"] = data["id"]
        if data.get("created_at"):
            kwargs["created_at"] = data["created_at"]
        return cls(**kwargs)

    def copy(self) -> "ProviderRecord":
        return ProviderRecord.from_dict(self.to_dict())


@dataclass
class IdentityGroup:
    """Records sharing an identity key, in input order."""
    key: str
    records: List[ProviderRecord] = field(default_factory=list)

    @property
    def sources(self) -> List[str]:
        """Distinct non-empty sources, in order of first appearance."""
        seen = []
        for record in self.records:
            if record.source and record.source not in seen:
                seen.append(record.source)
        return seen

    @property
    def is_multi_source(self) -> bool:
        return len(self.sources) >= 2


@dataclass(frozen=True)
class SourceValue:
    source: str
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {"source": self.source, "value": self.value}


@dataclass
class FieldComparison:
    """Outcome of comparing one field across an identity group."""
    field: str
    values: List[SourceValue]
    consistent: bool
    canonical_value: Optional[str] = None


@dataclass
class FieldConflict:
    """Reconciliation decision for one inconsistent field."""
    field: str
    values: List[SourceValue]
    corrected_value: Optional[str]
    rule: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "values": [v.to_dict() for v in self.values],
            "corrected_value": self.corrected_value,
            "rule": self.rule,
        }


@dataclass
class CleanedRecord:
    """Canonical record synthesized from an identity group."""
    npi: str = ""
    name: str = ""
    specialty: str = ""
    organization: str = ""
    phone: str = ""
    email: str = ""
    website: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    license_number: str = ""
    license_state: str = ""
    corrected_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = {name: getattr(self, name) for name in PROVIDER_FIELDS}
        data["corrected_fields"] = list(self.corrected_fields)
        return data


@dataclass
class Inconsistency:
    provider_name: str
    npi: str
    sources: List[str]
    inconsistent_fields: List[FieldConflict]
    cleaned_record: CleanedRecord

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_name": self.provider_name,
            "npi": self.npi,
            "sources": list(self.sources),
            "inconsistent_fields": [c.to_dict() for c in self.inconsistent_fields],
            "cleaned_record": self.cleaned_record.to_dict(),
        }


@dataclass
class ReconciliationOutcome:
    """Per-group reconciliation result."""
    group: IdentityGroup
    conflicts: List[FieldConflict]
    cleaned_record: CleanedRecord

    @property
    def is_consistent(self) -> bool:
        return not self.conflicts


@dataclass
class ReconciliationReport:
    total_checked: int
    inconsistent_count: int
    consistent_count: int
    inconsistencies: List[Inconsistency]
    cleaned_records: List[CleanedRecord]
    unmatched_count: int = 0

    @property
    def consistency_score(self) -> int:
        """Share of multi-source providers with no conflicts, 100 when nothing was checked."""
        if not self.total_checked:
            return 100
        return round(self.consistent_count / self.total_checked * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_checked": self.total_checked,
            "inconsistent_count": self.inconsistent_count,
            "consistent_count": self.consistent_count,
            "consistency_score": self.consistency_score,
            "unmatched_count": self.unmatched_count,
            "inconsistencies": [i.to_dict() for i in self.inconsistencies],
            "cleaned_records": [c.to_dict() for c in self.cleaned_records],
        }


@dataclass
class UserContext:
    """Identity attached to audit entries; supplied by the caller."""
    email: Optional[str] = None
    role: Optional[str] = None


@dataclass
class ValidationBatch:
    name: str
    source: str
    file_name: str = ""
    total_records: int = 0
    validated_count: int = 0
    flagged_count: int = 0
    failed_count: int = 0
    status: str = "validating"
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "source": self.source,
            "file_name": self.file_name,
            "total_records": self.total_records,
            "validated_count": self.validated_count,
            "flagged_count": self.flagged_count,
            "failed_count": self.failed_count,
            "status": self.status,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ValidationBatch":
        return cls(**{key: data[key] for key in cls.__dataclass_fields__ if key in data})


@dataclass
class AuditEntry:
    action: str
    description: str
    batch_id: Optional[str] = None
    provider_id: Optional[str] = None
    user_email: Optional[str] = None
    user_role: Optional[str] = None
    changes: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "description": self.description,
            "batch_id": self.batch_id,
            "provider_id": self.provider_id,
            "user_email": self.user_email,
            "user_role": self.user_role,
            "changes": dict(self.changes),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuditEntry":
        return cls(**{key: data[key] for key in cls.__dataclass_fields__ if key in data})


@dataclass
class BatchSummary:
    """Terminal statistics of one batch run."""
    batch_id: str
    total: int
    validated: int
    flagged: int
    failed: int = 0
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "total": self.total,
            "validated": self.validated,
            "flagged": self.flagged,
            "failed": self.failed,
            "duration": self.duration,
        }
