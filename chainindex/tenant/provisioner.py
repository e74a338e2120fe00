"""
Schema provisioning for tenant databases.

Every statement is ``CREATE TABLE IF NOT EXISTS``, so provisioning can be
repeated (job creation retries, re-provisioning an existing job) without
touching tables that already exist.
"""
import re
from typing import Iterable, List

from chainindex.core.errors import UnsupportedDataTypeError, ValidationError, classify_postgres_error
from chainindex.core.logger import setup_logger
from chainindex.core.models import DataType, IndexingJob, TenantConnection
from chainindex.tenant import tables
from chainindex.tenant.registry import ConnectionRegistry
from chainindex.tenant.tables import TableSpec, is_valid_identifier

logger = setup_logger(__name__, include_location=True)

# Column types and constraint clauses are free-form SQL; statement separators and comments are not
_UNSAFE_FRAGMENT = re.compile(r";|--|/\*|\*/")

FIXED_TABLES = {
    DataType.NFT_BIDS: [tables.NFT_BIDS],
    DataType.NFT_PRICES: [tables.NFT_PRICES],
    DataType.TOKEN_BORROW: [tables.TOKEN_BORROW_OFFERS],
    DataType.TOKEN_PRICES: [tables.TOKEN_PRICES, tables.TOKEN_PRICE_HISTORY],
}


def quote_ident(name: str) -> str:
    if not is_valid_identifier(name):
        raise ValidationError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


def build_create_table(spec: TableSpec) -> str:
    """Render the ``CREATE TABLE IF NOT EXISTS`` statement for ``spec``."""
    if not spec.columns:
        raise ValidationError(f"Table {spec.name!r} declares no columns")
    definitions = []
    for column in spec.columns:
        if not isinstance(column.type, str) or not column.type.strip():
            raise ValidationError(f"Column {column.name!r} of table {spec.name!r} has no type")
        parts = [quote_ident(column.name), column.type.strip()]
        if column.constraints:
            parts.append(column.constraints.strip())
        for fragment in parts[1:]:
            if _UNSAFE_FRAGMENT.search(fragment):
                raise ValidationError(f"Column {column.name!r} of table {spec.name!r} has an unsafe definition")
        definitions.append(" ".join(parts))
    return f"CREATE TABLE IF NOT EXISTS {quote_ident(spec.name)} ({', '.join(definitions)})"


def tables_for_job(job: IndexingJob) -> List[TableSpec]:
    """
    Table layouts a job writes into.

    Fixed data types map to predefined layouts; CUSTOM jobs declare theirs in
    ``config["tables"]`` as ``[{"name": ..., "columns": [{"name", "type", "constraints"}]}]``.

    Raises:
        UnsupportedDataTypeError: if the job's data type is not a known DataType
        ValidationError: if a CUSTOM job's ``tables`` entry is not a list of objects
    """
    try:
        data_type = DataType(job.data_type)
    except ValueError:
        raise UnsupportedDataTypeError(f"Unsupported data type: {job.data_type}")

    if data_type == DataType.CUSTOM:
        raw_tables = job.config.get("tables") or []
        if not isinstance(raw_tables, list) or not all(isinstance(t, dict) for t in raw_tables):
            raise ValidationError("Custom job config 'tables' must be a list of table definitions")
        return [TableSpec.from_dict(t) for t in raw_tables]
    return list(FIXED_TABLES[data_type])


class SchemaProvisioner:
    """Creates destination tables in tenant databases through the connection registry."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def provision_table(self, connection: TenantConnection, spec: TableSpec) -> bool:
        try:
            statement = build_create_table(spec)
        except ValidationError as e:
            logger.warning(f"Invalid table definition {spec.name!r} for connection {connection.id}: {e.message}")
            return False
        try:
            await self.registry.execute(connection, statement)
        except Exception as e:
            info = classify_postgres_error(e)
            logger.error(f"Error creating table {spec.name} on connection {connection.id}: {info.code} {info.message}")
            return False
        logger.info(f"Table {spec.name} provisioned on connection {connection.id}")
        return True

    async def provision(self, connection: TenantConnection, specs: Iterable[TableSpec]) -> bool:
        """
        Create every table in ``specs``; True only if all of them succeeded.

        Tables are independent: a failure does not stop the remaining ones and
        does not undo the ones already created.
        """
        success = True
        for spec in specs:
            success = await self.provision_table(connection, spec) and success
        return success

    async def provision_job(self, job: IndexingJob, connection: TenantConnection) -> bool:
        return await self.provision(connection, tables_for_job(job))
