"""
Event processors: map one inbound event into one deduplicated row write.

Each data type has exactly one processor. A processor never raises: it
returns True when the event was written or was already present (a
redelivery), and False when the event was rejected or the write failed.
Job scoped outcomes are also appended to the job's IngestionLog.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from psycopg.types.json import Json

from chainindex.core.db.store import log_job_event
from chainindex.core.errors import ChainIndexError, classify_postgres_error
from chainindex.core.logger import setup_logger
from chainindex.core.models import DataType, InboundEvent, IndexingJob, LogLevel, TenantConnection
from chainindex.indexing.jsonpath import resolve_path
from chainindex.tenant.tables import is_valid_identifier

logger = setup_logger(__name__, include_location=True)

UNKNOWN_SOURCE = "unknown"


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def epoch_ms_to_datetime(value: Any) -> Optional[datetime]:
    """Convert an epoch milliseconds value to an aware UTC datetime; None when absent or not numeric."""
    if is_blank(value):
        return None
    try:
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """TIMESTAMP columns hold UTC wall clock time."""
    return value.replace(tzinfo=None) if value is not None else None


def first_present(metadata: Dict[str, Any], *paths: str, default: Any = None) -> Any:
    for path in paths:
        value = resolve_path(metadata, path)
        if not is_blank(value):
            return value
    return default


class EventProcessor:
    """Base class: field validation, write, outcome logging."""

    data_type: DataType
    # Paths into ``event.metadata`` that must be present and non blank
    required_fields: Sequence[str] = ()

    def __init__(self, registry, store=None):
        self.registry = registry
        self.store = store

    async def _job_log(self, job: IndexingJob, level: LogLevel, message: str, metadata: Optional[Dict[str, Any]] = None):
        if self.store is not None:
            await log_job_event(self.store, job.id, message, level=level, metadata=metadata)

    def missing_fields(self, event: InboundEvent, job: IndexingJob) -> List[str]:
        return [path for path in self.required_fields if is_blank(resolve_path(event.metadata, path))]

    async def write(self, event: InboundEvent, job: IndexingJob, connection: TenantConnection) -> bool:
        """Perform the insert; True when a new row was written, False when it was a duplicate."""
        raise NotImplementedError

    def describe(self, event: InboundEvent) -> Dict[str, Any]:
        """Key fields carried in the written-row log entry."""
        return {}

    async def process(self, event: InboundEvent, job: IndexingJob, connection: TenantConnection) -> bool:
        signature = event.transaction_signature
        missing = self.missing_fields(event, job)
        if missing:
            message = f"Missing required fields for {self.data_type.value}: {', '.join(missing)}"
            logger.warning(f"Job {job.id}: {message} (signature {signature})")
            await self._job_log(job, LogLevel.WARNING, message, {
                "signature": signature,
                "missing": missing,
            })
            return False

        try:
            written = await self.write(event, job, connection)
        except Exception as e:
            info = e.info if isinstance(e, ChainIndexError) else classify_postgres_error(e)
            logger.error(f"Job {job.id}: error writing {self.data_type.value} event {signature}: {info.code} {info.message}")
            await self._job_log(job, LogLevel.ERROR, f"Error processing {self.data_type.value} event", {
                "signature": signature,
                "error": info.to_dict(),
            })
            return False

        if written:
            details = {"signature": signature, **self.describe(event)}
            logger.info(f"Job {job.id}: indexed {self.data_type.value} event {signature}")
            await self._job_log(job, LogLevel.INFO, f"Indexed {self.data_type.value} event", details)
        else:
            logger.debug(f"Job {job.id}: duplicate {self.data_type.value} event {signature} ignored")
            await self._job_log(job, LogLevel.DEBUG, f"Duplicate {self.data_type.value} event ignored", {
                "signature": signature,
            })
        return True


class _SignatureKeyedProcessor(EventProcessor):
    """Processors whose table carries a UNIQUE ``transaction_signature`` column."""

    table: str

    def row(self, event: InboundEvent) -> List[Tuple[str, Any]]:
        raise NotImplementedError

    async def write(self, event: InboundEvent, job: IndexingJob, connection: TenantConnection) -> bool:
        row = self.row(event) + [("transaction_signature", event.transaction_signature)]
        occurred_at = naive_utc(epoch_ms_to_datetime(event.timestamp))
        if occurred_at is not None:
            row.append(("created_at", occurred_at))
        columns = ", ".join(name for name, _ in row)
        placeholders = ", ".join(["%s"] * len(row))
        query = (
            f"INSERT INTO {self.table} ({columns}) VALUES ({placeholders}) "
            f"ON CONFLICT (transaction_signature) DO NOTHING RETURNING id"
        )
        rows = await self.registry.execute(connection, query, [value for _, value in row])
        return bool(rows)


class NftBidProcessor(_SignatureKeyedProcessor):
    data_type = DataType.NFT_BIDS
    table = "nft_bids"
    required_fields = ("amount", "buyer", "nft.mint")

    def row(self, event: InboundEvent) -> List[Tuple[str, Any]]:
        m = event.metadata
        return [
            ("mint_address", resolve_path(m, "nft.mint")),
            ("bidder_address", m["buyer"]),
            ("marketplace", first_present(m, "marketplace", "source", default=UNKNOWN_SOURCE)),
            ("price_lamports", m["amount"]),
            ("price_usd", m.get("amountUsd")),
            ("expires_at", naive_utc(epoch_ms_to_datetime(m.get("expiresAt")))),
        ]

    def describe(self, event: InboundEvent) -> Dict[str, Any]:
        m = event.metadata
        return {"mint": resolve_path(m, "nft.mint"), "bidder": m.get("buyer"), "amount": m.get("amount")}


class NftPriceProcessor(_SignatureKeyedProcessor):
    data_type = DataType.NFT_PRICES
    table = "nft_prices"
    required_fields = ("amount", "seller", "nft.mint")

    def row(self, event: InboundEvent) -> List[Tuple[str, Any]]:
        m = event.metadata
        return [
            ("mint_address", resolve_path(m, "nft.mint")),
            ("marketplace", first_present(m, "marketplace", "source", default=UNKNOWN_SOURCE)),
            ("price_lamports", m["amount"]),
            ("price_usd", m.get("amountUsd")),
            ("seller_address", m["seller"]),
        ]

    def describe(self, event: InboundEvent) -> Dict[str, Any]:
        m = event.metadata
        return {"mint": resolve_path(m, "nft.mint"), "seller": m.get("seller"), "amount": m.get("amount")}


class TokenBorrowProcessor(_SignatureKeyedProcessor):
    data_type = DataType.TOKEN_BORROW
    table = "token_borrow_offers"
    required_fields = ("token", "amount", "lender")

    def row(self, event: InboundEvent) -> List[Tuple[str, Any]]:
        m = event.metadata
        return [
            ("token_mint", m["token"]),
            ("platform", first_present(m, "platform", "source", default=UNKNOWN_SOURCE)),
            ("amount", m["amount"]),
            ("interest_rate", m.get("interestRate")),
            ("collateral_required", m.get("collateralRequired")),
            ("lender_address", m["lender"]),
            ("expires_at", naive_utc(epoch_ms_to_datetime(m.get("expiresAt")))),
        ]

    def describe(self, event: InboundEvent) -> Dict[str, Any]:
        m = event.metadata
        return {"token": m.get("token"), "lender": m.get("lender"), "amount": m.get("amount")}


# One statement: append the observation to the history unless this
# (token_mint, platform, timestamp) is already there, and only when it was
# appended refresh the current price row, seeding it on first sight.
TOKEN_PRICE_UPSERT = """
WITH history AS (
    INSERT INTO token_price_history (token_mint, platform, price_usd, volume_usd, timestamp)
    SELECT %(token_mint)s::varchar, %(platform)s::varchar, %(price_usd)s::numeric, %(volume_usd)s::numeric, %(observed_at)s::timestamp
    WHERE NOT EXISTS (
        SELECT 1 FROM token_price_history
        WHERE token_mint = %(token_mint)s::varchar AND platform = %(platform)s::varchar
            AND timestamp = %(observed_at)s::timestamp
    )
    RETURNING id, token_mint, platform, price_usd, volume_usd, timestamp
), refreshed AS (
    UPDATE token_prices AS p
    SET price_usd = h.price_usd, volume_24h_usd = h.volume_usd, last_updated_at = h.timestamp
    FROM history AS h
    WHERE p.token_mint = h.token_mint AND p.platform = h.platform
    RETURNING p.id
), seeded AS (
    INSERT INTO token_prices (token_mint, platform, price_usd, volume_24h_usd, last_updated_at)
    SELECT token_mint, platform, price_usd, volume_usd, timestamp FROM history
    WHERE NOT EXISTS (SELECT 1 FROM refreshed)
    RETURNING id
)
SELECT id FROM history
"""


class TokenPriceProcessor(EventProcessor):
    data_type = DataType.TOKEN_PRICES
    required_fields = ("token", "priceUsd")

    async def write(self, event: InboundEvent, job: IndexingJob, connection: TenantConnection) -> bool:
        m = event.metadata
        # Without an event time the history cannot deduplicate redeliveries
        observed_at = epoch_ms_to_datetime(event.timestamp) or datetime.now(timezone.utc)
        params = {
            "token_mint": m["token"],
            "platform": first_present(m, "platform", "source", default=UNKNOWN_SOURCE),
            "price_usd": m["priceUsd"],
            "volume_usd": m.get("volumeUsd"),
            "observed_at": naive_utc(observed_at),
        }
        rows = await self.registry.execute(connection, TOKEN_PRICE_UPSERT, params)
        return bool(rows)

    def describe(self, event: InboundEvent) -> Dict[str, Any]:
        m = event.metadata
        return {"token": m.get("token"), "price_usd": m.get("priceUsd")}


class CustomProcessor(EventProcessor):
    """
    User defined mapping, read from ``job.config["processor"]``::

        {"table": "my_events", "mapping": {"col_a": "metadata.x.y", "sig": "transactionSignature"}}

    Paths resolve against the whole event document; unresolved paths insert
    NULL. Columns with invalid names are skipped.
    """

    data_type = DataType.CUSTOM

    @staticmethod
    def processor_config(job: IndexingJob) -> Dict[str, Any]:
        config = job.config.get("processor")
        return config if isinstance(config, dict) else {}

    def plan(self, job: IndexingJob) -> Tuple[Optional[str], Dict[str, str]]:
        config = self.processor_config(job)
        table = config.get("table")
        mapping = config.get("mapping") if isinstance(config.get("mapping"), dict) else {}
        columns = {}
        for column, path in mapping.items():
            if not is_valid_identifier(column):
                logger.warning(f"Job {job.id}: skipping invalid column name {column!r} in custom mapping")
                continue
            columns[column] = path
        return (table if is_valid_identifier(table) else None), columns

    def missing_fields(self, event: InboundEvent, job: IndexingJob) -> List[str]:
        table, columns = self.plan(job)
        missing = []
        if table is None:
            missing.append("processor.table")
        if not columns:
            missing.append("processor.mapping")
        return missing

    async def write(self, event: InboundEvent, job: IndexingJob, connection: TenantConnection) -> bool:
        table, columns = self.plan(job)
        document = event.document()
        values = []
        for path in columns.values():
            value = resolve_path(document, path)
            values.append(Json(value) if isinstance(value, (dict, list)) else value)
        column_list = ", ".join(f'"{c}"' for c in columns)
        placeholders = ", ".join(["%s"] * len(values))
        query = f'INSERT INTO "{table}" ({column_list}) VALUES ({placeholders}) ON CONFLICT DO NOTHING RETURNING 1'
        rows = await self.registry.execute(connection, query, values)
        return bool(rows)

    def describe(self, event: InboundEvent) -> Dict[str, Any]:
        return {"type": event.type}


PROCESSORS = {
    DataType.NFT_BIDS: NftBidProcessor,
    DataType.NFT_PRICES: NftPriceProcessor,
    DataType.TOKEN_BORROW: TokenBorrowProcessor,
    DataType.TOKEN_PRICES: TokenPriceProcessor,
    DataType.CUSTOM: CustomProcessor,
}

_uncovered = set(DataType) - set(PROCESSORS)
if _uncovered:
    raise RuntimeError(f"No event processor registered for data types: {sorted(t.value for t in _uncovered)}")


def build_processors(registry, store=None) -> Dict[DataType, EventProcessor]:
    return {data_type: cls(registry, store) for data_type, cls in PROCESSORS.items()}
