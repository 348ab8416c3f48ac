"""
Configuration utilities for DirectoryVerify.

Loads the YAML configuration, merges it over documented defaults and exposes
typed views for the validator, scorer, reconciler and batch orchestrator.
"""

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import yaml

from directory_verify.errors import ConfigurationError
from directory_verify.models import COMPARISON_FIELDS, Source, UserContext

if TYPE_CHECKING:
    from directory_verify.audit.audit_logger import AuditLogger

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/directory_verify.yaml"

PERSISTENCE_FAILURE_POLICIES = ("continue", "abort")


def get_default_config() -> Dict[str, Any]:
    """
    Get default DirectoryVerify configuration.

    Returns:
        Default configuration dictionary
    """
    return {
        "validation": {
            "deductions": {
                "phone": 15,
                "email": 10,
                "website": 10,
                "address": 20,
                "zip": 10,
                "license_number": 15,
                "npi": 10,
            }
        },
        "scoring": {
            "confidence_threshold": 70
        },
        "reconciliation": {
            "source_precedence": [s.value for s in Source],
            "trusted_source": Source.WEB.value,
            "trusted_min_length": 5,
            "comparison_fields": list(COMPARISON_FIELDS)
        },
        "batch": {
            "max_workers": 8,
            "enrichment_timeout": 10.0,
            "on_persistence_failure": "continue",
            "show_progress": False
        },
        "enrichment": {
            "enabled": False,
            "adapter": "rule_based",
            "default_region": "US"
        },
        "storage": {
            "db_path": "data/directory_verify.db"
        },
        "logging": {
            "level": "INFO",
            "file": "logs/directory_verify.log"
        }
    }


def merge_configs(base_config: Dict[str, Any], override_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge two configuration dictionaries.

    Args:
        base_config: Base configuration
        override_config: Override configuration

    Returns:
        Merged configuration
    """
    merged = copy.deepcopy(base_config)

    for key, value in override_config.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value

    return merged


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Load configuration from YAML file, merged over the defaults.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    try:
        config_file = Path(config_path)
        if not config_file.exists():
            logger.warning(f"Configuration file {config_path} not found, using defaults")
            return get_default_config()

        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}

        logger.info(f"Loaded configuration from {config_path}")
        return merge_configs(get_default_config(), config)

    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load configuration from {config_path}: {e}")
        return get_default_config()


def validate_config(config: Dict[str, Any]) -> bool:
    """
    Validate configuration.

    Args:
        config: Configuration dictionary

    Returns:
        True if configuration is valid, False otherwise
    """
    required_sections = ["validation", "scoring", "reconciliation", "batch"]

    for section in required_sections:
        if section not in config:
            logger.error(f"Missing required configuration section: {section}")
            return False

    deductions = config["validation"].get("deductions", {})
    for field_name, value in deductions.items():
        if not isinstance(value, int) or value < 0:
            logger.error(f"validation.deductions.{field_name} must be a non-negative integer")
            return False

    threshold = config["scoring"].get("confidence_threshold", 70)
    if not isinstance(threshold, (int, float)) or not 0 <= threshold <= 100:
        logger.error("scoring.confidence_threshold must be a number between 0 and 100")
        return False

    precedence = config["reconciliation"].get("source_precedence", [])
    if not isinstance(precedence, list) or len(set(precedence)) != len(precedence):
        logger.error("reconciliation.source_precedence must be a list without duplicates")
        return False

    batch = config["batch"]
    if not isinstance(batch.get("max_workers", 1), int) or batch.get("max_workers", 1) < 1:
        logger.error("batch.max_workers must be a positive integer")
        return False

    if batch.get("on_persistence_failure", "continue") not in PERSISTENCE_FAILURE_POLICIES:
        logger.error(f"batch.on_persistence_failure must be one of {PERSISTENCE_FAILURE_POLICIES}")
        return False

    logger.info("Configuration validation passed")
    return True


def save_config(config: Dict[str, Any], config_path: str) -> bool:
    """
    Save configuration to YAML file.

    Args:
        config: Configuration dictionary
        config_path: Path to save configuration

    Returns:
        True if successful, False otherwise
    """
    try:
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w') as f:
            yaml.dump(config, f, default_flow_style=False, indent=2)

        logger.info(f"Saved configuration to {config_path}")
        return True

    except OSError as e:
        logger.error(f"Failed to save configuration to {config_path}: {e}")
        return False


def flatten_config(config: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """
    Flatten nested configuration into dotted keys.

    Lists and scalars are leaves.
    """
    flat = {}
    for key, value in config.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(flatten_config(value, f"{dotted}."))
        else:
            flat[dotted] = value
    return flat


def parse_setting(assignment: str) -> Dict[str, Any]:
    """
    Parse a ``section.key=value`` assignment into a nested override.

    The value is read as YAML, so ``80`` is an int, ``null`` is None and
    ``[web, print]`` is a list.

    Raises:
        ConfigurationError: If the assignment has no key or no ``=``
    """
    key, sep, raw_value = assignment.partition("=")
    key = key.strip()
    if not sep or not key:
        raise ConfigurationError(f"Setting must look like section.key=value, got '{assignment}'")

    try:
        value = yaml.safe_load(raw_value) if raw_value.strip() else ""
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Unreadable value for {key}: {e}")

    override: Dict[str, Any] = {}
    node = override
    parts = key.split(".")
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value
    return override


def update_settings(config_path: str, overrides: Dict[str, Any],
                    audit_logger: Optional["AuditLogger"] = None,
                    user: Optional[UserContext] = None) -> List[str]:
    """
    Merge overrides into the saved configuration and record the change.

    Args:
        config_path: Configuration file to update
        overrides: Nested override dictionary
        audit_logger: Optional audit logger for a settings_changed entry
        user: Identity attached to the audit entry

    Returns:
        Dotted keys whose value changed

    Raises:
        ConfigurationError: If the result is invalid or cannot be saved
    """
    current = load_config(config_path)
    updated = merge_configs(current, overrides)
    if not validate_config(updated):
        raise ConfigurationError("Settings update rejected", details=overrides)

    before = flatten_config(current)
    after = flatten_config(updated)
    changed = [key for key in after if before.get(key) != after[key]]
    if not changed:
        logger.info("Settings unchanged")
        return []

    if not save_config(updated, config_path):
        raise ConfigurationError(f"Could not save configuration to {config_path}")

    if audit_logger is not None:
        audit_logger.log_action(
            "settings_changed",
            f"Updated settings: {', '.join(changed)}",
            user=user,
            changes={key: {"from": before.get(key), "to": after[key]} for key in changed},
        )

    logger.info(f"Updated {len(changed)} settings in {config_path}")
    return changed


@dataclass
class ValidationConfig:
    """Score deduction per failing field."""
    deductions: Dict[str, int] = field(
        default_factory=lambda: dict(get_default_config()["validation"]["deductions"])
    )

    def deduction_for(self, field_name: str) -> int:
        return int(self.deductions.get(field_name, 0))


@dataclass
class ScoringConfig:
    """Records scoring below ``confidence_threshold`` are flagged for review."""
    confidence_threshold: int = 70


@dataclass
class ReconciliationConfig:
    """Source precedence and trusted-source shortcut for the value reconciler."""
    source_precedence: List[str] = field(default_factory=lambda: [s.value for s in Source])
    trusted_source: Optional[str] = Source.WEB.value
    trusted_min_length: int = 5
    comparison_fields: List[str] = field(default_factory=lambda: list(COMPARISON_FIELDS))

    def precedence_rank(self, source: str) -> int:
        """Position in the precedence list; unknown sources rank last."""
        try:
            return self.source_precedence.index(source)
        except ValueError:
            return len(self.source_precedence)


@dataclass
class BatchConfig:
    max_workers: int = 8
    enrichment_timeout: Optional[float] = 10.0
    on_persistence_failure: str = "continue"
    show_progress: bool = False


@dataclass
class EngineConfig:
    """Typed view over the configuration dictionary."""
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    raw: Dict[str, Any] = field(default_factory=get_default_config)

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]] = None) -> "EngineConfig":
        """
        Build typed configuration from a (possibly partial) dictionary.

        Args:
            config: Configuration dictionary; missing keys take their defaults

        Raises:
            ConfigurationError: If the merged configuration is invalid
        """
        merged = merge_configs(get_default_config(), config or {})
        if not validate_config(merged):
            raise ConfigurationError("Invalid DirectoryVerify configuration", details=merged)

        recon = merged["reconciliation"]
        batch = merged["batch"]
        return cls(
            validation=ValidationConfig(deductions=dict(merged["validation"]["deductions"])),
            scoring=ScoringConfig(confidence_threshold=merged["scoring"]["confidence_threshold"]),
            reconciliation=ReconciliationConfig(
                source_precedence=list(recon["source_precedence"]),
                trusted_source=recon.get("trusted_source"),
                trusted_min_length=int(recon["trusted_min_length"]),
                comparison_fields=list(recon["comparison_fields"]),
            ),
            batch=BatchConfig(
                max_workers=batch["max_workers"],
                enrichment_timeout=batch.get("enrichment_timeout"),
                on_persistence_failure=batch["on_persistence_failure"],
                show_progress=bool(batch.get("show_progress", False)),
            ),
            raw=merged,
        )

    @classmethod
    def load(cls, config_path: str = DEFAULT_CONFIG_PATH) -> "EngineConfig":
        return cls.from_dict(load_config(config_path))
