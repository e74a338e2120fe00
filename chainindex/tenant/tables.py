"""
Destination table layouts written into tenant databases.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_valid_identifier(name: Any) -> bool:
    return isinstance(name, str) and len(name) <= 63 and bool(IDENTIFIER_RE.match(name))


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    type: str
    constraints: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ColumnSpec":
        return cls(
            name=data.get("name"),
            type=data.get("type"),
            constraints=data.get("constraints") or None,
        )


@dataclass(frozen=True)
class TableSpec:
    name: str
    columns: List[ColumnSpec] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableSpec":
        columns = data.get("columns") or []
        return cls(
            name=data.get("name"),
            columns=[ColumnSpec.from_dict(c) if isinstance(c, dict) else c for c in columns],
        )


_SIGNATURE = ColumnSpec("transaction_signature", "VARCHAR(128)", "UNIQUE")
_ID = ColumnSpec("id", "SERIAL", "PRIMARY KEY")
_CREATED_AT = ColumnSpec("created_at", "TIMESTAMP", "NOT NULL DEFAULT CURRENT_TIMESTAMP")
_STATUS = ColumnSpec("status", "VARCHAR(50)", "NOT NULL DEFAULT 'active'")

NFT_BIDS = TableSpec("nft_bids", [
    _ID,
    ColumnSpec("mint_address", "VARCHAR(255)", "NOT NULL"),
    ColumnSpec("bidder_address", "VARCHAR(255)", "NOT NULL"),
    ColumnSpec("marketplace", "VARCHAR(100)", "NOT NULL"),
    ColumnSpec("price_lamports", "BIGINT", "NOT NULL"),
    ColumnSpec("price_usd", "DECIMAL(18, 6)"),
    _SIGNATURE,
    _CREATED_AT,
    ColumnSpec("expires_at", "TIMESTAMP"),
    _STATUS,
])

NFT_PRICES = TableSpec("nft_prices", [
    _ID,
    ColumnSpec("mint_address", "VARCHAR(255)", "NOT NULL"),
    ColumnSpec("marketplace", "VARCHAR(100)", "NOT NULL"),
    ColumnSpec("price_lamports", "BIGINT", "NOT NULL"),
    ColumnSpec("price_usd", "DECIMAL(18, 6)"),
    ColumnSpec("seller_address", "VARCHAR(255)", "NOT NULL"),
    _SIGNATURE,
    _CREATED_AT,
    _STATUS,
])

TOKEN_BORROW_OFFERS = TableSpec("token_borrow_offers", [
    _ID,
    ColumnSpec("token_mint", "VARCHAR(255)", "NOT NULL"),
    ColumnSpec("platform", "VARCHAR(100)", "NOT NULL"),
    ColumnSpec("amount", "DECIMAL(36, 18)", "NOT NULL"),
    ColumnSpec("interest_rate", "DECIMAL(10, 6)"),
    ColumnSpec("collateral_required", "DECIMAL(36, 18)"),
    ColumnSpec("lender_address", "VARCHAR(255)", "NOT NULL"),
    _SIGNATURE,
    _CREATED_AT,
    ColumnSpec("expires_at", "TIMESTAMP"),
    _STATUS,
])

TOKEN_PRICES = TableSpec("token_prices", [
    _ID,
    ColumnSpec("token_mint", "VARCHAR(255)", "NOT NULL"),
    ColumnSpec("platform", "VARCHAR(100)", "NOT NULL"),
    ColumnSpec("price_usd", "DECIMAL(36, 18)", "NOT NULL"),
    ColumnSpec("volume_24h_usd", "DECIMAL(36, 18)"),
    ColumnSpec("last_updated_at", "TIMESTAMP", "NOT NULL DEFAULT CURRENT_TIMESTAMP"),
])

TOKEN_PRICE_HISTORY = TableSpec("token_price_history", [
    _ID,
    ColumnSpec("token_mint", "VARCHAR(255)", "NOT NULL"),
    ColumnSpec("platform", "VARCHAR(100)", "NOT NULL"),
    ColumnSpec("price_usd", "DECIMAL(36, 18)", "NOT NULL"),
    ColumnSpec("volume_usd", "DECIMAL(36, 18)"),
    ColumnSpec("timestamp", "TIMESTAMP", "NOT NULL DEFAULT CURRENT_TIMESTAMP"),
])
