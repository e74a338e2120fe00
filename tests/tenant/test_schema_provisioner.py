import pytest

from chainindex.core.errors import UnsupportedDataTypeError, ValidationError
from chainindex.core.models import DataType, IndexingJob
from chainindex.tenant.provisioner import SchemaProvisioner, build_create_table, tables_for_job
from chainindex.tenant.tables import ColumnSpec, TableSpec, NFT_BIDS


def _job(data_type, config=None):
    return IndexingJob(id="job-1", data_type=data_type, config=config or {}, connection_id="conn-1")


def test_build_create_table_quotes_identifiers_and_keeps_column_order():
    statement = build_create_table(NFT_BIDS)

    assert statement.startswith('CREATE TABLE IF NOT EXISTS "nft_bids" (')
    assert '"transaction_signature" VARCHAR(128) UNIQUE' in statement
    assert statement.index('"mint_address"') < statement.index('"bidder_address"') < statement.index('"status"')


@pytest.mark.parametrize("name", ["bad-name", "1table", "drop table x", "", "a" * 64])
def test_build_create_table_rejects_invalid_identifiers(name):
    with pytest.raises(ValidationError):
        build_create_table(TableSpec(name, [ColumnSpec("id", "INT")]))


def test_build_create_table_rejects_statement_injection_in_types():
    spec = TableSpec("events", [ColumnSpec("id", "INT); DROP TABLE users; --")])
    with pytest.raises(ValidationError):
        build_create_table(spec)


def test_build_create_table_requires_columns_and_types():
    with pytest.raises(ValidationError):
        build_create_table(TableSpec("events", []))
    with pytest.raises(ValidationError):
        build_create_table(TableSpec("events", [ColumnSpec("id", "")]))


def test_tables_for_fixed_data_types():
    assert [t.name for t in tables_for_job(_job(DataType.NFT_BIDS.value))] == ["nft_bids"]
    assert [t.name for t in tables_for_job(_job(DataType.NFT_PRICES.value))] == ["nft_prices"]
    assert [t.name for t in tables_for_job(_job(DataType.TOKEN_BORROW.value))] == ["token_borrow_offers"]
    assert [t.name for t in tables_for_job(_job(DataType.TOKEN_PRICES.value))] == [
        "token_prices", "token_price_history",
    ]


def test_tables_for_custom_job_reads_config():
    job = _job("CUSTOM", {"tables": [
        {"name": "my_events", "columns": [
            {"name": "id", "type": "SERIAL", "constraints": "PRIMARY KEY"},
            {"name": "col_a", "type": "TEXT"},
        ]},
    ]})

    (spec,) = tables_for_job(job)

    assert spec.name == "my_events"
    assert spec.columns[0] == ColumnSpec("id", "SERIAL", "PRIMARY KEY")
    assert spec.columns[1].constraints is None


def test_tables_for_unknown_data_type_raises():
    with pytest.raises(UnsupportedDataTypeError):
        tables_for_job(_job("NFT_MINTS"))


def test_tables_for_custom_job_with_malformed_tables_raises():
    with pytest.raises(ValidationError):
        tables_for_job(_job("CUSTOM", {"tables": "my_events"}))


@pytest.mark.asyncio
async def test_provisioning_is_idempotent(tenant_db, connection):
    provisioner = SchemaProvisioner(tenant_db)
    job = _job(DataType.TOKEN_PRICES.value)

    assert await provisioner.provision_job(job, connection) is True
    assert await provisioner.provision_job(job, connection) is True

    statements = [q for q, _ in tenant_db.executed]
    assert len(statements) == 4
    assert all(q.startswith("CREATE TABLE IF NOT EXISTS") for q in statements)


@pytest.mark.asyncio
async def test_failed_table_does_not_stop_the_batch(tenant_db, connection):
    tenant_db.fail_on = '"first"'
    provisioner = SchemaProvisioner(tenant_db)
    specs = [
        TableSpec("first", [ColumnSpec("id", "INT")]),
        TableSpec("second", [ColumnSpec("id", "INT")]),
    ]

    assert await provisioner.provision(connection, specs) is False
    assert any('"second"' in q for q, _ in tenant_db.executed)


@pytest.mark.asyncio
async def test_invalid_spec_is_skipped_without_executing(tenant_db, connection):
    provisioner = SchemaProvisioner(tenant_db)
    specs = [
        TableSpec("bad-name", [ColumnSpec("id", "INT")]),
        TableSpec("good", [ColumnSpec("id", "INT")]),
    ]

    assert await provisioner.provision(connection, specs) is False
    assert [q for q, _ in tenant_db.executed] == ['CREATE TABLE IF NOT EXISTS "good" ("id" INT)']
