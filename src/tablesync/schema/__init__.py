"""
Schema management package for tablesync.

This package provides:
- Table descriptors and the closed field type mapping
- Structural diffing of declared against introspected tables
- DDL generation
- Statement execution (imported from .operations directly)
"""

from .model import FieldDefinition, FieldType, TableDescriptor, TypeFamily, default_value
from .changes import ChangeType, StructuralChange
from .reconciler import SchemaReconciler, ReconciliationResult, ReconciliationStatus, compatible, diff
from .ddl import DDLEmitter, quote_ident, quote_literal

__all__ = [
    "FieldDefinition",
    "FieldType",
    "TableDescriptor",
    "TypeFamily",
    "default_value",
    "ChangeType",
    "StructuralChange",
    "SchemaReconciler",
    "ReconciliationResult",
    "ReconciliationStatus",
    "compatible",
    "diff",
    "DDLEmitter",
    "quote_ident",
    "quote_literal",
]
