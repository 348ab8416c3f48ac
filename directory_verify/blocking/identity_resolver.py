"""
Identity resolver for DirectoryVerify.

Derives a deterministic identity key per record (NPI, else normalized
name) and groups records into an explicit key -> records multimap so that
providers listed in several directories can be compared.

Known limitation: two different providers without an NPI whose names
normalize to the same string share a key. Such collisions are not detected.
"""

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from directory_verify.models import IdentityGroup, ProviderRecord

logger = logging.getLogger(__name__)

_NON_ALPHA = re.compile(r"[^a-z]")


def identity_key(npi: Optional[str], name: Optional[str]) -> Optional[str]:
    """
    Derive the identity key for a provider.

    Args:
        npi: National provider identifier
        name: Provider name

    Returns:
        Trimmed NPI if present, otherwise the lowercased name with every
        character outside a-z removed; None when neither yields a key
    """
    npi = (npi or "").strip()
    if npi:
        return npi

    normalized_name = _NON_ALPHA.sub("", (name or "").lower())
    return normalized_name or None


@dataclass
class IdentityIndex:
    """Key -> records multimap plus records that produced no key."""
    groups: "OrderedDict[str, IdentityGroup]" = field(default_factory=OrderedDict)
    unmatched: List[ProviderRecord] = field(default_factory=list)
    npi_keys: Set[str] = field(default_factory=set)

    def add(self, key: str, record: ProviderRecord):
        if key not in self.groups:
            self.groups[key] = IdentityGroup(key=key)
        self.groups[key].records.append(record)

    def multi_source_groups(self) -> List[IdentityGroup]:
        """Groups spanning at least two distinct sources, in first-seen order."""
        return [group for group in self.groups.values() if group.is_multi_source]

    def __len__(self) -> int:
        return len(self.groups)


class IdentityResolver:
    """
    Groups provider records by identity key.

    Reduces cross-source comparison to records that share an NPI or a
    normalized name instead of comparing every pair of records.
    """

    def build_index(self, records: Iterable[ProviderRecord]) -> IdentityIndex:
        """
        Group records by identity key, preserving input order.

        Args:
            records: Provider records, typically a snapshot of the store

        Returns:
            IdentityIndex with groups and unmatched singletons
        """
        index = IdentityIndex()

        for record in records:
            key = identity_key(record.npi, record.name)
            if key is None:
                index.unmatched.append(record)
                continue
            if (record.npi or "").strip():
                index.npi_keys.add(key)
            index.add(key, record)

        logger.info(f"Built {len(index)} identity groups "
                    f"({len(index.multi_source_groups())} multi-source, "
                    f"{len(index.unmatched)} unmatched)")
        return index

    def get_grouping_statistics(self, index: IdentityIndex) -> Dict[str, float]:
        """
        Calculate grouping statistics.

        Args:
            index: Identity index

        Returns:
            Dictionary with group counts and sizes
        """
        sizes = [len(group.records) for group in index.groups.values()]
        multi_source = index.multi_source_groups()
        npi_keyed = sum(1 for key in index.groups if key in index.npi_keys)

        return {
            "total_records": sum(sizes) + len(index.unmatched),
            "total_groups": len(sizes),
            "multi_source_groups": len(multi_source),
            "npi_keyed_groups": npi_keyed,
            "name_keyed_groups": len(sizes) - npi_keyed,
            "unmatched_records": len(index.unmatched),
            "avg_group_size": sum(sizes) / len(sizes) if sizes else 0.0,
            "max_group_size": max(sizes) if sizes else 0,
        }


def create_identity_groups(records: Iterable[ProviderRecord]) -> List[IdentityGroup]:
    """
    Convenience function returning the multi-source identity groups.

    Args:
        records: Provider records

    Returns:
        Groups eligible for reconciliation
    """
    resolver = IdentityResolver()
    index = resolver.build_index(records)

    stats = resolver.get_grouping_statistics(index)
    logger.info(f"Identity grouping completed: {stats['multi_source_groups']} multi-source groups "
                f"from {stats['total_records']} records")

    return index.multi_source_groups()
