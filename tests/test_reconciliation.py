"""
Unit tests for conflict detection and value reconciliation.
"""

import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from directory_verify.config import ReconciliationConfig
from directory_verify.match.conflict_detector import ConflictDetector
from directory_verify.merge.consistency_checker import ConsistencyChecker
from directory_verify.merge.value_reconciler import (
    RULE_LONGEST,
    RULE_MAJORITY,
    RULE_TRUSTED_SOURCE,
    ValueReconciler,
)
from directory_verify.models import IdentityGroup, ProviderRecord, SourceValue


def make_record(source, **fields):
    base = {"npi": "1234567890", "name": "Dr. Jane Smith"}
    base.update(fields)
    return ProviderRecord(source=source, **base)


class TestConflictDetector:
    """Test cases for conflict detector."""

    def setup_method(self):
        """Setup test fixtures."""
        self.detector = ConflictDetector()

    def test_case_and_whitespace_insensitive(self):
        group = IdentityGroup(key="1234567890", records=[
            make_record("web", email="Jane@Clinic.com "),
            make_record("mobile", email=" jane@clinic.com"),
        ])
        comparison = self.detector.compare_field(group, "email")

        assert comparison.consistent
        assert comparison.canonical_value == "Jane@Clinic.com"

    def test_empty_values_ignored(self):
        group = IdentityGroup(key="1234567890", records=[
            make_record("web", city=""),
            make_record("mobile", city="Springfield"),
        ])
        comparison = self.detector.compare_field(group, "city")

        assert comparison.consistent
        assert comparison.values == [SourceValue("mobile", "Springfield")]
        assert comparison.canonical_value == "Springfield"

    def test_all_empty_field_is_consistent_without_value(self):
        group = IdentityGroup(key="k", records=[make_record("web"), make_record("print")])
        comparison = self.detector.compare_field(group, "website")

        assert comparison.consistent
        assert comparison.canonical_value is None

    def test_distinct_values_are_inconsistent(self):
        group = IdentityGroup(key="k", records=[
            make_record("web", zip="12345"),
            make_record("print", zip="54321"),
        ])
        comparisons = self.detector.detect(group)

        assert [c.field for c in comparisons if not c.consistent] == ["zip"]


class TestValueReconciler:
    """Test cases for value reconciler."""

    def setup_method(self):
        """Setup test fixtures."""
        self.reconciler = ValueReconciler()
        self.no_trusted = ValueReconciler(ReconciliationConfig(trusted_source=None))

    def test_majority_value_selected(self):
        values = [
            SourceValue("web", "555-111-2222"),
            SourceValue("mobile", "555-999-9999"),
            SourceValue("print", "555-111-2222"),
        ]

        assert self.reconciler.resolve_field_conflict("phone", values)[0] == "555-111-2222"
        assert self.no_trusted.resolve_field_conflict("phone", values) == ("555-111-2222", RULE_MAJORITY)

    def test_trusted_source_beats_majority(self):
        values = [
            SourceValue("web", "a@longmail.com"),
            SourceValue("mobile", "b@y.co"),
            SourceValue("print", "b@y.co"),
        ]

        assert self.reconciler.resolve_field_conflict("email", values) == ("a@longmail.com", RULE_TRUSTED_SOURCE)

    def test_short_trusted_value_falls_through(self):
        values = [
            SourceValue("web", "IL"),
            SourceValue("mobile", "Illinois"),
        ]

        assert self.reconciler.resolve_field_conflict("state", values) == ("Illinois", RULE_LONGEST)

    def test_no_consensus_takes_longest(self):
        values = [
            SourceValue("mobile", "100 Oak Ave"),
            SourceValue("print", "100 Oak Avenue"),
            SourceValue("web", "100 Oak"),
        ]

        assert self.no_trusted.resolve_field_conflict("address", values) == ("100 Oak Avenue", RULE_LONGEST)

    def test_longest_tie_broken_by_precedence(self):
        values = [
            SourceValue("print", "12345"),
            SourceValue("mobile", "54321"),
        ]

        assert self.reconciler.resolve_field_conflict("zip", values)[0] == "54321"

    def test_majority_tie_broken_by_precedence(self):
        values = [
            SourceValue("print", "A St"),
            SourceValue("print", "A St"),
            SourceValue("mobile", "B St"),
            SourceValue("mobile", "B St"),
        ]

        assert self.reconciler.resolve_field_conflict("address", values) == ("B St", RULE_MAJORITY)

    def test_custom_precedence(self):
        reconciler = ValueReconciler(ReconciliationConfig(
            source_precedence=["print", "mobile", "web"], trusted_source=None))
        values = [SourceValue("web", "11111"), SourceValue("print", "22222")]

        assert reconciler.resolve_field_conflict("zip", values)[0] == "22222"

    def test_no_values(self):
        assert self.reconciler.resolve_field_conflict("phone", []) == (None, None)


class TestConsistencyChecker:
    """Test cases for the consistency check over a record snapshot."""

    def setup_method(self):
        """Setup test fixtures."""
        self.checker = ConsistencyChecker()
        self.records = [
            make_record("web", phone="555-111-2222", email="a@longmail.com",
                        address="", city="Springfield", state="IL", zip="62701"),
            make_record("mobile", phone="555-999-9999", email="b@y.co",
                        address="1 Main St", city="Springfield", state="IL", zip="62701"),
            make_record("print", phone="555-111-2222", email="",
                        address="1 Main Street", city="springfield", state="IL", zip="62701"),
            ProviderRecord(npi="", name="Solo Provider", source="web", phone="555-000-0000"),
        ]

    def test_report_counts(self):
        report = self.checker.run(self.records)

        assert report.total_checked == 1
        assert report.inconsistent_count == 1
        assert report.consistent_count == 0
        assert report.consistency_score == 0

    def test_inconsistency_details(self):
        report = self.checker.run(self.records)
        inconsistency = report.inconsistencies[0]

        assert inconsistency.provider_name == "Dr. Jane Smith"
        assert inconsistency.npi == "1234567890"
        assert inconsistency.sources == ["web", "mobile", "print"]

        conflicts = {c.field: c for c in inconsistency.inconsistent_fields}
        assert set(conflicts) == {"phone", "email", "address"}
        assert conflicts["phone"].corrected_value == "555-111-2222"
        assert conflicts["email"].corrected_value == "a@longmail.com"
        assert conflicts["address"].corrected_value == "1 Main Street"
        assert [v.value for v in conflicts["email"].values] == ["a@longmail.com", "b@y.co", "(empty)"]

    def test_cleaned_record(self):
        report = self.checker.run(self.records)
        cleaned = report.cleaned_records[0]

        assert cleaned.npi == "1234567890"
        assert cleaned.name == "Dr. Jane Smith"
        assert cleaned.phone == "555-111-2222"
        assert cleaned.address == "1 Main Street"
        assert cleaned.city == "Springfield"
        assert cleaned.corrected_fields == ["address"]

    def test_unanimous_group_is_consistent(self):
        records = [
            make_record("web", phone="555-111-2222", city="Springfield"),
            make_record("print", phone="555-111-2222", city="SPRINGFIELD"),
        ]
        report = self.checker.run(records)

        assert report.total_checked == 1
        assert report.inconsistent_count == 0
        assert report.consistency_score == 100
        assert report.cleaned_records[0].phone == "555-111-2222"
        assert report.cleaned_records[0].corrected_fields == []

    def test_nothing_to_check(self):
        report = self.checker.run([make_record("web")])

        assert report.total_checked == 0
        assert report.consistency_score == 100

    def test_reconciliation_is_idempotent(self):
        first = self.checker.run(self.records).to_dict()
        second = self.checker.run(self.records).to_dict()

        assert first == second

    def test_report_dict_shape(self):
        data = self.checker.run(self.records).to_dict()

        assert set(data) >= {"total_checked", "inconsistent_count", "consistent_count",
                             "consistency_score", "inconsistencies", "cleaned_records"}
        field_entry = data["inconsistencies"][0]["inconsistent_fields"][0]
        assert set(field_entry) >= {"field", "values", "corrected_value"}
        assert set(field_entry["values"][0]) == {"source", "value"}

    def test_records_without_key_are_unmatched(self):
        records = self.records + [ProviderRecord(npi="", name="", source="print")]
        report = self.checker.run(records)

        assert report.unmatched_count == 1


if __name__ == "__main__":
    pytest.main([__file__])
