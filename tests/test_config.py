"""
Unit tests for configuration loading.
"""

import shutil
import tempfile

import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from directory_verify.audit.audit_logger import AuditLogger
from directory_verify.config import (
    EngineConfig,
    get_default_config,
    load_config,
    merge_configs,
    parse_setting,
    save_config,
    update_settings,
    validate_config,
)
from directory_verify.errors import ConfigurationError
from directory_verify.models import UserContext
from directory_verify.storage.record_store import InMemoryRecordStore


class TestConfig:
    """Test cases for configuration utilities."""

    def setup_method(self):
        """Setup test fixtures."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_missing_file_uses_defaults(self):
        config = load_config(str(Path(self.temp_dir) / "missing.yaml"))
        assert config == get_default_config()

    def test_partial_file_merged_over_defaults(self):
        config_path = Path(self.temp_dir) / "config.yaml"
        config_path.write_text("scoring:\n  confidence_threshold: 80\nvalidation:\n  deductions:\n    phone: 25\n")

        config = load_config(str(config_path))

        assert config["scoring"]["confidence_threshold"] == 80
        assert config["validation"]["deductions"]["phone"] == 25
        assert config["validation"]["deductions"]["email"] == 10

    def test_unreadable_yaml_uses_defaults(self):
        config_path = Path(self.temp_dir) / "broken.yaml"
        config_path.write_text("scoring: [unclosed\n")

        assert load_config(str(config_path)) == get_default_config()

    def test_merge_does_not_mutate_base(self):
        base = get_default_config()
        merge_configs(base, {"batch": {"max_workers": 2}})

        assert base["batch"]["max_workers"] == 8

    def test_validate_config(self):
        assert validate_config(get_default_config())

        bad_policy = merge_configs(get_default_config(), {"batch": {"on_persistence_failure": "retry"}})
        assert not validate_config(bad_policy)

        bad_threshold = merge_configs(get_default_config(), {"scoring": {"confidence_threshold": 150}})
        assert not validate_config(bad_threshold)

        duplicate_sources = merge_configs(get_default_config(),
                                          {"reconciliation": {"source_precedence": ["web", "web"]}})
        assert not validate_config(duplicate_sources)

    def test_engine_config_defaults(self):
        config = EngineConfig.from_dict()

        assert config.scoring.confidence_threshold == 70
        assert config.validation.deduction_for("address") == 20
        assert config.reconciliation.source_precedence == ["web", "mobile", "print"]
        assert config.reconciliation.precedence_rank("print") == 2
        assert config.reconciliation.precedence_rank("fax") == 3
        assert config.batch.on_persistence_failure == "continue"

    def test_engine_config_rejects_invalid_values(self):
        with pytest.raises(ConfigurationError):
            EngineConfig.from_dict({"batch": {"max_workers": 0}})

    def test_save_and_load(self):
        config_path = Path(self.temp_dir) / "nested" / "saved.yaml"
        config = merge_configs(get_default_config(), {"reconciliation": {"trusted_source": None}})

        assert save_config(config, str(config_path))
        loaded = EngineConfig.load(str(config_path))
        assert loaded.reconciliation.trusted_source is None

    def test_shipped_config_is_valid(self):
        shipped = Path(__file__).parent.parent / "config" / "directory_verify.yaml"
        config = EngineConfig.load(str(shipped))

        assert config.scoring.confidence_threshold == 70
        assert config.batch.max_workers == 8


class TestUpdateSettings:
    """Test cases for saved settings updates."""

    def setup_method(self):
        """Setup test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = str(Path(self.temp_dir) / "config.yaml")
        self.store = InMemoryRecordStore()
        self.audit_logger = AuditLogger(self.store)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_parse_setting(self):
        assert parse_setting("scoring.confidence_threshold=80") == {"scoring": {"confidence_threshold": 80}}
        assert parse_setting("reconciliation.trusted_source=null") == {"reconciliation": {"trusted_source": None}}
        assert parse_setting("reconciliation.source_precedence=[print, web]") == {
            "reconciliation": {"source_precedence": ["print", "web"]}
        }

        with pytest.raises(ConfigurationError):
            parse_setting("scoring.confidence_threshold")

    def test_update_saves_and_logs_changed_keys(self):
        user = UserContext(email="admin@clinic.com", role="admin")
        changed = update_settings(self.config_path, {"scoring": {"confidence_threshold": 80},
                                                     "batch": {"max_workers": 8}},
                                  audit_logger=self.audit_logger, user=user)

        assert changed == ["scoring.confidence_threshold"]
        assert EngineConfig.load(self.config_path).scoring.confidence_threshold == 80

        entry = self.audit_logger.get_entries(action="settings_changed")[0]
        assert entry.changes == {"scoring.confidence_threshold": {"from": 70, "to": 80}}
        assert entry.user_email == "admin@clinic.com"

    def test_unchanged_settings_not_logged(self):
        assert update_settings(self.config_path, {"batch": {"max_workers": 8}}, self.audit_logger) == []
        assert self.audit_logger.get_entries(action="settings_changed") == []
        assert not Path(self.config_path).exists()

    def test_invalid_update_rejected(self):
        with pytest.raises(ConfigurationError):
            update_settings(self.config_path, {"batch": {"on_persistence_failure": "retry"}},
                            self.audit_logger)

        assert not Path(self.config_path).exists()
        assert self.audit_logger.get_entries(action="settings_changed") == []


if __name__ == "__main__":
    pytest.main([__file__])
