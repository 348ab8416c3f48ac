"""
Field validation for DirectoryVerify.

Classifies each provider field as valid, invalid or not applicable and
accumulates the score deduction for the record. Validation is pure: the
same field values always produce the same report.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional

from directory_verify.config import ValidationConfig
from directory_verify.models import FieldOutcome, ValidationResults

logger = logging.getLogger(__name__)

PHONE_REGEX = r"^\+?\(?[0-9]{3}\)?[-\s.]?[0-9]{3}[-\s.]?[0-9]{4,6}$"
EMAIL_REGEX = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
WEBSITE_REGEX = r"^(https?://)?[\da-z.-]+\.[a-z.]{2,6}[/\w .-]*/?$"
ZIP_REGEX = r"^\d{5}(-\d{4})?$"
NPI_REGEX = r"^\d{10}$"

LICENSE_MIN_LENGTH = 5


class IssueKind(str, Enum):
    """Why a field lost points."""
    FORMAT_ERROR = "format_error"
    MISSING_DATA = "missing_data"


@dataclass(frozen=True)
class FieldIssue:
    field: str
    kind: IssueKind
    deduction: int


@dataclass
class FieldValidationReport:
    """Tri-state outcome per field plus the total score deduction."""
    results: ValidationResults
    total_deduction: int = 0
    issues: List[FieldIssue] = field(default_factory=list)


class FieldValidator:
    """
    Validates provider fields against format and completeness rules.

    Missing phone and incomplete address are penalised; missing email,
    website and license number are not applicable; zip and NPI are only
    evaluated when present.
    """

    def __init__(self, config: Optional[ValidationConfig] = None):
        """
        Initialize field validator with configuration.

        Args:
            config: Deduction weights per field
        """
        self.config = config or ValidationConfig()

        # Compile regex patterns for efficiency
        self.phone_pattern = re.compile(PHONE_REGEX)
        self.email_pattern = re.compile(EMAIL_REGEX)
        self.website_pattern = re.compile(WEBSITE_REGEX)
        self.zip_pattern = re.compile(ZIP_REGEX)
        self.npi_pattern = re.compile(NPI_REGEX)
        self.whitespace_pattern = re.compile(r"\s+")

    def validate(self, fields: Mapping[str, Optional[str]]) -> FieldValidationReport:
        """
        Validate one record's raw field values.

        A field is present when it is non-empty after trimming, but format
        checks run on the value as submitted, so surrounding spaces fail.

        Args:
            fields: Field name to raw value; missing keys count as empty

        Returns:
            FieldValidationReport with outcomes and total deduction
        """
        values = {name: self._raw(fields.get(name)) for name in (
            "phone", "email", "website", "address", "city", "state", "zip",
            "license_number", "npi"
        )}
        results = ValidationResults()
        issues: List[FieldIssue] = []

        # Phone is required: missing and malformed cost the same
        phone = values["phone"]
        if self._present(phone):
            results.phone = self._outcome(self.phone_pattern.match(self.whitespace_pattern.sub("", phone)))
            if results.phone == FieldOutcome.INVALID:
                issues.append(self._issue("phone", IssueKind.FORMAT_ERROR))
        else:
            results.phone = FieldOutcome.INVALID
            issues.append(self._issue("phone", IssueKind.MISSING_DATA))

        results.email = self._check_optional("email", values["email"], self.email_pattern, issues)
        results.website = self._check_optional("website", values["website"], self.website_pattern, issues)

        # Address completeness needs all four location parts
        if all(self._present(values[part]) for part in ("address", "city", "state", "zip")):
            results.address = FieldOutcome.VALID
        else:
            results.address = FieldOutcome.INVALID
            issues.append(self._issue("address", IssueKind.MISSING_DATA))

        if self._present(values["zip"]):
            results.zip = self._outcome(self.zip_pattern.match(values["zip"]))
            if results.zip == FieldOutcome.INVALID:
                issues.append(self._issue("zip", IssueKind.FORMAT_ERROR))

        license_number = values["license_number"]
        if self._present(license_number):
            results.license_number = self._outcome(len(license_number) >= LICENSE_MIN_LENGTH)
            if results.license_number == FieldOutcome.INVALID:
                issues.append(self._issue("license_number", IssueKind.FORMAT_ERROR))
        else:
            results.license_number = FieldOutcome.NOT_APPLICABLE

        if self._present(values["npi"]):
            results.npi = self._outcome(self.npi_pattern.match(values["npi"]))
            if results.npi == FieldOutcome.INVALID:
                issues.append(self._issue("npi", IssueKind.FORMAT_ERROR))

        total_deduction = sum(issue.deduction for issue in issues)

        logger.debug(f"Validated fields {results.evaluated_fields()}: deduction {total_deduction}")
        return FieldValidationReport(results=results, total_deduction=total_deduction, issues=issues)

    def _check_optional(self, field_name: str, value: str, pattern: re.Pattern,
                        issues: List[FieldIssue]) -> FieldOutcome:
        """Check a field that is not applicable when absent."""
        if not self._present(value):
            return FieldOutcome.NOT_APPLICABLE

        outcome = self._outcome(pattern.match(value))
        if outcome == FieldOutcome.INVALID:
            issues.append(self._issue(field_name, IssueKind.FORMAT_ERROR))
        return outcome

    def _issue(self, field_name: str, kind: IssueKind) -> FieldIssue:
        return FieldIssue(field=field_name, kind=kind, deduction=self.config.deduction_for(field_name))

    @staticmethod
    def _outcome(passed) -> FieldOutcome:
        return FieldOutcome.VALID if passed else FieldOutcome.INVALID

    @staticmethod
    def _present(value: str) -> bool:
        return bool(value.strip())

    @staticmethod
    def _raw(value: Optional[str]) -> str:
        if value is None:
            return ""
        return str(value)
