"""
Row mapping for DirectoryVerify.

Maps raw directory rows with heterogeneous column names onto provider
fields and loads uploaded CSV files as rows.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from directory_verify.models import PROVIDER_FIELDS, ProviderRecord, Source

logger = logging.getLogger(__name__)

# Accepted column names per provider field, in lookup order
COLUMN_ALIASES: Dict[str, Sequence[str]] = {
    "npi": ("npi", "NPI"),
    "name": ("name", "Name", "provider_name"),
    "specialty": ("specialty", "Specialty"),
    "organization": ("organization", "Organization"),
    "phone": ("phone", "Phone", "telephone"),
    "email": ("email", "Email"),
    "website": ("website", "Website"),
    "address": ("address", "Address", "street"),
    "city": ("city", "City"),
    "state": ("state", "State"),
    "zip": ("zip", "ZIP", "zipcode"),
    "license_number": ("license_number", "license"),
    "license_state": ("license_state",),
}


def clean_cell(value: Any) -> str:
    """Convert a raw cell to a string, mapping None and NaN to ``""``."""
    if value is None:
        return ""
    if not isinstance(value, str) and pd.isna(value):
        return ""
    return str(value)


class RowMapper:
    """
    Maps raw rows onto provider fields using column aliases.

    The first alias with a non-empty value wins; ``license_state`` falls
    back to the mapped state.
    """

    def __init__(self, aliases: Optional[Mapping[str, Sequence[str]]] = None):
        self.aliases = dict(COLUMN_ALIASES)
        if aliases:
            self.aliases.update(aliases)

    def map_row(self, row: Mapping[str, Any]) -> Dict[str, str]:
        """
        Map one raw row.

        Args:
            row: Raw column name to cell value

        Returns:
            Provider field values, ``""`` for missing fields
        """
        fields = {}
        for field_name in PROVIDER_FIELDS:
            fields[field_name] = ""
            for column in self.aliases.get(field_name, (field_name,)):
                value = clean_cell(row.get(column))
                if value:
                    fields[field_name] = value
                    break

        if not fields["license_state"]:
            fields["license_state"] = fields["state"]

        return fields

    def build_record(self, row: Mapping[str, Any], source: str,
                     batch_id: Optional[str] = None) -> ProviderRecord:
        """
        Build a pending provider record from a raw row.

        Args:
            row: Raw row
            source: Directory source label
            batch_id: Validation batch the row belongs to

        Returns:
            ProviderRecord with the mapped fields and an original-data snapshot

        Raises:
            ValueError: If the source label is unknown
        """
        source = Source(source).value
        fields = self.map_row(row)
        return ProviderRecord(
            source=source,
            batch_id=batch_id,
            original_data=dict(fields),
            **fields,
        )


def load_rows(file_path: str) -> List[Dict[str, str]]:
    """
    Load a CSV file as a list of raw rows.

    Args:
        file_path: Path to CSV file

    Returns:
        Rows with every cell read as a string
    """
    try:
        df = pd.read_csv(file_path, dtype=str, keep_default_na=False)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        logger.error(f"Failed to read rows from {file_path}: {e}")
        raise

    df.columns = [str(column).strip() for column in df.columns]
    rows = df.to_dict(orient="records")

    logger.info(f"Loaded {len(rows)} rows from {file_path}")
    return rows
