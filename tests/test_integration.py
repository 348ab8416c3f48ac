"""
Integration tests for the complete DirectoryVerify workflow.
"""

import json
import shutil
import tempfile

import pytest
import pandas as pd
import sys
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from directory_verify.audit.audit_logger import AuditLogger, ReviewService
from directory_verify.config import EngineConfig, load_config
from directory_verify.merge.consistency_checker import ConsistencyChecker
from directory_verify.models import RecordStatus
from directory_verify.pipeline.batch_orchestrator import BatchOrchestrator
from directory_verify.pipeline.run_directory_verify import main, resolve_log_level
from directory_verify.reporting.exporter import DirectoryExporter
from directory_verify.storage.record_store import InMemoryRecordStore, SQLiteRecordStore


WEB_ROWS = pd.DataFrame({
    "npi": ["1234567890", "2222222222", ""],
    "name": ["Dr. Jane Smith", "Dr. Bob Jones", "Dr. Carol White"],
    "phone": ["555-111-2222", "555-333-4444", "555-777-8888"],
    "email": ["jane.smith@clinic.com", "", "carol@white.org"],
    "address": ["1 Main St", "9 Elm St", "4 Oak Ave"],
    "city": ["Springfield", "Shelbyville", "Capital City"],
    "state": ["IL", "IL", "IL"],
    "zip": ["62701", "62565", "62702"],
})

MOBILE_ROWS = pd.DataFrame({
    "NPI": ["1234567890", "2222222222"],
    "Name": ["Jane Smith", "Bob Jones"],
    "Phone": ["555-999-9999", "555-333-4444"],
    "Email": ["j@x.co", ""],
    "Address": ["1 Main Street", "9 Elm St"],
    "City": ["Springfield", "Shelbyville"],
    "State": ["IL", "IL"],
    "ZIP": ["62701", "62565"],
})

PRINT_ROWS = pd.DataFrame({
    "provider_name": ["Jane Smith MD", "Dr. Carol White"],
    "npi": ["1234567890", ""],
    "telephone": ["555-111-2222", ""],
    "street": ["1 Main St", ""],
    "zipcode": ["62701", ""],
    "license": ["12", "ab"],
})


class TestDirectoryVerifyWorkflow:
    """Integration tests on an in-memory store."""

    def setup_method(self):
        """Setup test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.store = InMemoryRecordStore()
        self.config = EngineConfig.from_dict({"batch": {"max_workers": 4}})
        self.audit_logger = AuditLogger(self.store)

        with BatchOrchestrator(self.store, self.config, audit_logger=self.audit_logger) as orchestrator:
            self.summaries = [
                orchestrator.run_batch(WEB_ROWS.to_dict(orient="records"), "web", "Web"),
                orchestrator.run_batch(MOBILE_ROWS.to_dict(orient="records"), "mobile", "Mobile"),
                orchestrator.run_batch(PRINT_ROWS.to_dict(orient="records"), "print", "Print"),
            ]

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_batches_validated(self):
        web, mobile, print_batch = self.summaries

        assert (web.total, web.validated, web.flagged) == (3, 3, 0)
        assert (mobile.total, mobile.validated, mobile.flagged) == (2, 2, 0)
        assert (print_batch.total, print_batch.flagged) == (2, 2)
        assert len(self.store.list_records()) == 7

    def test_consistency_check(self):
        report = ConsistencyChecker(self.config.reconciliation).run_from_store(self.store, self.audit_logger)

        # Jane and Bob by NPI, Carol by name across web and print
        assert report.total_checked == 3
        assert report.inconsistent_count == 1
        assert report.consistency_score == 67

        jane = report.inconsistencies[0]
        assert jane.npi == "1234567890"
        assert jane.sources == ["web", "mobile", "print"]
        conflicts = {c.field: c.corrected_value for c in jane.inconsistent_fields}
        assert conflicts["phone"] == "555-111-2222"
        assert conflicts["email"] == "jane.smith@clinic.com"
        assert conflicts["address"] == "1 Main St"

        assert self.audit_logger.get_entries(action="consistency_check")[0].changes == {"consistency_score": 67}

    def test_review_then_export(self):
        review = ReviewService(self.store, self.audit_logger)
        queue = review.review_queue()
        assert [r.name for r in queue] == ["Dr. Carol White", "Jane Smith MD"]
        carol, jane = queue

        review.approve(jane.id, edits={"city": "Springfield", "state": "IL"})
        review.reject(carol.id)

        exporter = DirectoryExporter(self.store, self.audit_logger)
        output = Path(self.temp_dir) / "directory.csv"
        exported = exporter.export_validated(str(output))

        df = pd.read_csv(output, dtype=str, keep_default_na=False)
        assert exported == 6
        assert len(df) == 6
        assert list(df["Name"]).count("Dr. Carol White") == 1
        assert list(df.columns)[-1] == "Confidence Score"

        assert self.store.get_record(jane.id).status == RecordStatus.APPROVED
        assert self.store.get_record(jane.id).city == "Springfield"
        assert self.store.get_record(carol.id).status == RecordStatus.REJECTED


class TestCommandLine:
    """Integration tests for the command line on a SQLite store."""

    def setup_method(self):
        """Setup test fixtures."""
        self.temp_dir = Path(tempfile.mkdtemp())
        self.db_path = self.temp_dir / "data" / "directory_verify.db"

        self.config_path = self.temp_dir / "config.yaml"
        self.config_path.write_text(
            "batch:\n"
            "  max_workers: 2\n"
            "  show_progress: false\n"
            "logging:\n"
            f"  file: \"{self.temp_dir / 'logs' / 'directory_verify.log'}\"\n"
        )

        self.web_csv = self.temp_dir / "web.csv"
        self.mobile_csv = self.temp_dir / "mobile.csv"
        WEB_ROWS.to_csv(self.web_csv, index=False)
        MOBILE_ROWS.to_csv(self.mobile_csv, index=False)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def run_cli(self, *args):
        main(["--config", str(self.config_path), "--db", str(self.db_path)] + list(args))

    def test_validate_reconcile_export(self):
        self.run_cli("validate", "--input", str(self.web_csv), "--source", "web")
        self.run_cli("validate", "--input", str(self.mobile_csv), "--source", "mobile", "--batch-name", "Mobile")

        store = SQLiteRecordStore(str(self.db_path))
        assert len(store.list_records()) == 5
        assert [b.name for b in store.list_batches()] == ["Mobile", "web"]

        report_path = self.temp_dir / "report.json"
        reconciled_path = self.temp_dir / "reconciled.csv"
        self.run_cli("reconcile", "--report", str(report_path), "--output", str(reconciled_path))

        report = json.loads(report_path.read_text())
        assert report["total_checked"] == 2
        assert report["inconsistent_count"] == 1
        assert {c["npi"] for c in report["cleaned_records"]} == {"1234567890", "2222222222"}

        reconciled = pd.read_csv(reconciled_path, dtype=str, keep_default_na=False)
        assert list(reconciled.columns)[-1] == "Corrected Fields"
        assert len(reconciled) == 2

        export_path = self.temp_dir / "web_directory.csv"
        self.run_cli("export", "--output", str(export_path), "--source", "web")
        exported = pd.read_csv(export_path, dtype=str, keep_default_na=False)
        assert len(exported) == 3

        actions = {entry.action for entry in store.list_audit_entries()}
        assert {"upload", "validation_run", "consistency_check", "export"} <= actions

    def test_missing_input_exits_with_error(self):
        with pytest.raises(SystemExit) as exc_info:
            self.run_cli("validate", "--input", str(self.temp_dir / "missing.csv"), "--source", "web")

        assert exc_info.value.code == 1

    def test_settings_command_updates_config(self):
        self.run_cli("--user-email", "admin@clinic.com", "settings",
                     "--set", "scoring.confidence_threshold=80",
                     "--set", "reconciliation.trusted_source=null")

        config = load_config(str(self.config_path))
        assert config["scoring"]["confidence_threshold"] == 80
        assert config["reconciliation"]["trusted_source"] is None
        assert config["batch"]["max_workers"] == 2

        entry = SQLiteRecordStore(str(self.db_path)).list_audit_entries(action="settings_changed")[0]
        assert set(entry.changes) == {"scoring.confidence_threshold", "reconciliation.trusted_source"}
        assert entry.user_email == "admin@clinic.com"

    def test_invalid_setting_exits_with_error(self):
        with pytest.raises(SystemExit) as exc_info:
            self.run_cli("settings", "--set", "batch.max_workers=0")

        assert exc_info.value.code == 1
        assert load_config(str(self.config_path))["batch"]["max_workers"] == 2

    def test_log_level_falls_back_to_config(self):
        assert resolve_log_level(None, {"level": "warning"}) == "WARNING"
        assert resolve_log_level("DEBUG", {"level": "WARNING"}) == "DEBUG"
        assert resolve_log_level(None, {}) == "INFO"
        assert resolve_log_level(None, {"level": "chatty"}) == "INFO"


if __name__ == "__main__":
    pytest.main([__file__])
