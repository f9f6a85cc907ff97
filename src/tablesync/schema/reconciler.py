"""
Schema reconciliation core logic for tablesync.

Compares a declared table descriptor with the introspected one and
computes the ordered list of structural changes that makes the live
table match the declaration.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..exceptions import AmbiguousRenameError
from .changes import StructuralChange
from .model import FieldDefinition, FieldType, TableDescriptor, TypeFamily


logger = logging.getLogger(__name__)


class ReconciliationStatus(str, Enum):
    """Outcome of reconciling one schema."""

    CREATED = "created"
    ALTERED = "altered"
    UNCHANGED = "unchanged"
    PLANNED = "planned"


@dataclass
class ReconciliationResult:
    """Result of creating, reconciling or planning one table."""

    table: str
    status: ReconciliationStatus
    changes: List[StructuralChange] = field(default_factory=list)
    statements: List[str] = field(default_factory=list)
    execution_time_ms: float = 0.0

    @property
    def has_changes(self) -> bool:
        return bool(self.statements)

    @property
    def destructive_changes(self) -> List[StructuralChange]:
        return [c for c in self.changes if c.is_destructive]


def compatible(a: FieldDefinition, b: FieldDefinition) -> bool:
    """
    Check whether two fields have the same physical type.

    Type tags must match (raw SQL names for OTHER, case-insensitively);
    varchar sizes must match; integer fields must agree on
    auto-increment. Names are not compared.
    """
    if a.type != b.type:
        return False
    if a.type == FieldType.OTHER:
        return (a.raw_type or "").lower() == (b.raw_type or "").lower()
    if a.type == FieldType.VARCHAR:
        return a.size == b.size
    if a.family == TypeFamily.INTEGER:
        return a.auto_increment == b.auto_increment
    return True


class SchemaReconciler:
    """
    Structural diff between a declared and an existing table.

    Rename detection is greedy: an unmatched declared field takes the
    first compatible unmatched existing column. With strict_renames an
    ambiguous match raises instead of guessing.
    """

    def __init__(self, strict_renames: bool = False):
        self.strict_renames = strict_renames

    def diff(self, desired: TableDescriptor, existing: TableDescriptor) -> List[StructuralChange]:
        """Compute the ordered structural changes from existing to desired."""
        changes: List[StructuralChange] = []
        changes.extend(self._diff_columns(desired, existing))
        changes.extend(self._diff_primary_key(desired, existing))
        changes.extend(self._diff_indexes(desired, existing))
        return changes

    def _diff_columns(
        self, desired: TableDescriptor, existing: TableDescriptor
    ) -> List[StructuralChange]:
        changes: List[StructuralChange] = []
        wanted = list(desired.physical_fields)
        current = list(existing.fields)
        wanted_done = [False] * len(wanted)
        current_done = [False] * len(current)

        # Exact-name pass
        for i, want in enumerate(wanted):
            for j, have in enumerate(current):
                if current_done[j] or have.name != want.name:
                    continue
                if not compatible(want, have):
                    changes.append(StructuralChange.retype_column(have, want))
                wanted_done[i] = current_done[j] = True
                break

        # Rename-detection pass
        for i, want in enumerate(wanted):
            if wanted_done[i]:
                continue
            candidates = [
                j for j, have in enumerate(current)
                if not current_done[j] and compatible(want, have)
            ]
            if not candidates:
                continue
            if len(candidates) > 1:
                names = [current[j].name for j in candidates]
                if self.strict_renames:
                    raise AmbiguousRenameError(desired.name, want.name, names)
                logger.warning(
                    f"Ambiguous rename for {desired.name}.{want.name}: "
                    f"candidates {', '.join(names)}, using {names[0]}"
                )
            j = candidates[0]
            changes.append(StructuralChange.rename_and_retype_column(current[j], want))
            wanted_done[i] = current_done[j] = True

        # Drop pass
        for j, have in enumerate(current):
            if not current_done[j]:
                changes.append(StructuralChange.drop_column(have))

        # Add pass
        for i, want in enumerate(wanted):
            if not wanted_done[i]:
                changes.append(StructuralChange.add_column(want))

        return changes

    def _diff_primary_key(
        self, desired: TableDescriptor, existing: TableDescriptor
    ) -> List[StructuralChange]:
        wanted: Optional[str] = desired.effective_primary_key
        current: Optional[str] = existing.primary_key

        if wanted == current:
            return []

        changes: List[StructuralChange] = []
        if current:
            changes.append(
                StructuralChange.drop_primary_key(current, existing.primary_key_constraint)
            )
        if wanted:
            changes.append(StructuralChange.set_primary_key(wanted))
        return changes

    def _diff_indexes(
        self, desired: TableDescriptor, existing: TableDescriptor
    ) -> List[StructuralChange]:
        changes: List[StructuralChange] = []
        for key in existing.indexes:
            # extra physical indexes on one key are always redundant
            for name in existing.duplicate_indexes.get(key, []):
                changes.append(StructuralChange.drop_index(key, name))
            if key not in desired.indexes:
                changes.append(StructuralChange.drop_index(key, existing.index_names.get(key)))
        for key in desired.indexes:
            if key not in existing.indexes:
                changes.append(StructuralChange.add_index(key))
        return changes


def diff(
    desired: TableDescriptor,
    existing: TableDescriptor,
    strict_renames: bool = False,
) -> List[StructuralChange]:
    """Module-level shortcut for SchemaReconciler(strict_renames).diff()."""
    return SchemaReconciler(strict_renames=strict_renames).diff(desired, existing)
