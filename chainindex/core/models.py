"""
Domain models shared by the registry, the indexing pipeline and the API.
"""

import hashlib
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from psycopg.conninfo import make_conninfo


class DataType(str, Enum):
    NFT_BIDS = "NFT_BIDS"
    NFT_PRICES = "NFT_PRICES"
    TOKEN_BORROW = "TOKEN_BORROW"
    TOKEN_PRICES = "TOKEN_PRICES"
    CUSTOM = "CUSTOM"


class IndexingStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    PAUSED = "PAUSED"
    ERROR = "ERROR"
    COMPLETED = "COMPLETED"


class LogLevel(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    DEBUG = "DEBUG"


class JobAction(str, Enum):
    START = "start"
    STOP = "stop"
    PAUSE = "pause"


ACTION_STATUS = {
    JobAction.START: IndexingStatus.ACTIVE,
    JobAction.STOP: IndexingStatus.INACTIVE,
    JobAction.PAUSE: IndexingStatus.PAUSED,
}


class TenantConnection(BaseModel):
    """A tenant owned PostgreSQL database the indexer writes into."""

    id: str
    tenant_id: Optional[str] = None
    name: Optional[str] = None
    host: str
    port: int = 5432
    database: str
    username: str
    password: SecretStr
    is_active: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def conninfo(self, **extra: Any) -> str:
        """libpq connection string; contains the password, never log it."""
        return make_conninfo(
            host=self.host,
            port=self.port,
            dbname=self.database,
            user=self.username,
            password=self.password.get_secret_value(),
            **extra,
        )

    @property
    def fingerprint(self) -> str:
        """Hash of the credentials a pool was built from, safe to keep in memory and logs."""
        return hashlib.sha256(self.conninfo().encode()).hexdigest()

    def describe(self) -> str:
        return f"{self.username}@{self.host}:{self.port}/{self.database}"


class IndexingJob(BaseModel):
    id: str
    tenant_id: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    # Stored verbatim; resolved against DataType at dispatch time
    data_type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    status: IndexingStatus = IndexingStatus.INACTIVE
    connection_id: str
    subscription_id: Optional[str] = None
    last_run: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    connection: Optional[TenantConnection] = None


class IngestionLogEntry(BaseModel):
    id: Optional[int] = None
    job_id: str
    timestamp: Optional[datetime] = None
    level: LogLevel
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class InboundEvent(BaseModel):
    """One event pushed by the event source; ``transaction_signature`` is its idempotency key."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    transaction_signature: str = Field(..., alias="transactionSignature", min_length=1)
    timestamp: Optional[int] = Field(None, description="Event time, epoch milliseconds")
    type: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    webhook_id: Optional[str] = Field(None, alias="webhookId")
    account_addresses: List[str] = Field(default_factory=list, alias="accountAddresses")

    def document(self) -> Dict[str, Any]:
        """The event as delivered on the wire, for path based extraction."""
        return self.model_dump(by_alias=True)

    @field_validator("metadata", mode="before")
    @classmethod
    def null_metadata_is_empty(cls, v):
        return {} if v is None else v

    @field_validator("account_addresses", mode="before")
    @classmethod
    def null_addresses_is_empty(cls, v):
        return [] if v is None else v
