"""
Unit tests for directory export and statistics.
"""

import csv
import shutil
import tempfile

import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from directory_verify.audit.audit_logger import AuditLogger
from directory_verify.models import CleanedRecord, ProviderRecord, RecordStatus
from directory_verify.reporting.exporter import (
    CONFIDENCE_HEADER,
    CORRECTED_HEADER,
    EXPORT_HEADERS,
    DirectoryExporter,
)
from directory_verify.storage.record_store import InMemoryRecordStore


def read_csv_rows(path):
    with open(path, newline="") as f:
        return list(csv.reader(f))


class TestDirectoryExporter:
    """Test cases for directory exporter."""

    def setup_method(self):
        """Setup test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.store = InMemoryRecordStore()
        self.audit_logger = AuditLogger(self.store)
        self.exporter = DirectoryExporter(self.store, self.audit_logger)

        self.store.create_record(ProviderRecord(
            npi="1234567890", name="Smith, Jane", phone="(555) 123-4567", source="web",
            status=RecordStatus.VALIDATED, confidence_score=100,
            original_data={"phone": "555-123-4567", "email": ""},
        ))
        self.store.create_record(ProviderRecord(
            name="Bob Jones", source="mobile", email="bob@clinic.com",
            status=RecordStatus.APPROVED, confidence_score=55,
            original_data={"email": ""}, suggestions={"phone": "(555) 000-1111"},
        ))
        self.store.create_record(ProviderRecord(
            name="Flagged", source="web", status=RecordStatus.FLAGGED, confidence_score=20,
        ))
        self.store.create_record(ProviderRecord(
            name="Rejected", source="print", status=RecordStatus.REJECTED, confidence_score=80,
        ))

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_export_validated_directory(self):
        output = Path(self.temp_dir) / "out" / "directory.csv"
        exported = self.exporter.export_validated(str(output))

        rows = read_csv_rows(output)
        assert exported == 2
        assert rows[0] == EXPORT_HEADERS + [CONFIDENCE_HEADER]
        assert [row[1] for row in rows[1:]] == ["Smith, Jane", "Bob Jones"]
        assert rows[1][0] == "1234567890"
        assert rows[1][-1] == "100"
        assert rows[2][0] == ""

    def test_every_field_is_quoted(self):
        output = Path(self.temp_dir) / "directory.csv"
        self.exporter.export_validated(str(output))

        lines = output.read_text().splitlines()
        assert lines[0].startswith('"NPI","Name"')
        assert lines[1].startswith('"1234567890","Smith, Jane"')
        assert lines[2].startswith('"","Bob Jones"')

    def test_source_filter(self):
        output = Path(self.temp_dir) / "mobile.csv"
        exported = self.exporter.export_validated(str(output), source="mobile")

        rows = read_csv_rows(output)
        assert exported == 1
        assert rows[1][1] == "Bob Jones"

    def test_empty_export_writes_header(self):
        output = Path(self.temp_dir) / "print.csv"
        exported = self.exporter.export_validated(str(output), source="print")

        assert exported == 0
        assert read_csv_rows(output) == [EXPORT_HEADERS + [CONFIDENCE_HEADER]]

    def test_export_reconciled(self):
        cleaned = [
            CleanedRecord(npi="1234567890", name="Jane Smith", phone="555-111-2222",
                          corrected_fields=["phone", "address"]),
            CleanedRecord(npi="2222222222", name="Bob Jones"),
        ]
        output = Path(self.temp_dir) / "reconciled.csv"
        exported = self.exporter.export_reconciled(cleaned, str(output))

        rows = read_csv_rows(output)
        assert exported == 2
        assert rows[0][-1] == CORRECTED_HEADER
        assert rows[1][4] == "555-111-2222"
        assert rows[1][-1] == "phone; address"
        assert rows[2][-1] == ""

    def test_export_logs_audit_entry(self):
        self.exporter.export_validated(str(Path(self.temp_dir) / "directory.csv"))

        entry = self.audit_logger.get_entries(action="export")[0]
        assert entry.description == "Exported 2 cleaned provider records"
        assert entry.changes["mode"] == "validated"

    def test_changed_fields(self):
        record = self.store.list_records()[0]
        changes = self.exporter.get_changed_fields(record)

        assert changes == [{"field": "phone", "before": "555-123-4567", "after": "(555) 123-4567"}]

        bob = self.store.list_records()[1]
        assert self.exporter.get_changed_fields(bob) == [
            {"field": "email", "before": "(empty)", "after": "bob@clinic.com"}
        ]

    def test_directory_statistics(self):
        stats = self.exporter.get_directory_statistics()

        assert stats["original_records"] == 4
        assert stats["cleaned_records"] == 2
        assert stats["avg_confidence_after"] == 78
        assert stats["records_improved"] == 1
        assert stats["records_with_changes"] == 2
        assert stats["by_source"] == {"web": 2, "mobile": 1, "print": 1}
        assert stats["by_status"]["flagged"] == 1


if __name__ == "__main__":
    pytest.main([__file__])
