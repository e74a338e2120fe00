"""
Tenant database access: pooled connections, connectivity probes and schema provisioning.
"""

from .registry import ConnectionRegistry
from .provisioner import SchemaProvisioner, tables_for_job, build_create_table
from .tables import ColumnSpec, TableSpec

__all__ = [
    "ConnectionRegistry",
    "SchemaProvisioner",
    "tables_for_job",
    "build_create_table",
    "ColumnSpec",
    "TableSpec",
]
