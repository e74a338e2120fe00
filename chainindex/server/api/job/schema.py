"""
Indexing Job API Schemas - Request/Response models for indexing jobs and their logs.
"""

from typing import Optional, Dict, Any, List
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from chainindex.core.models import IndexingJob, IndexingStatus, IngestionLogEntry, LogLevel, TenantConnection


class JobCreateRequest(BaseModel):
    """Request schema for creating an indexing job."""

    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    data_type: str = Field(..., description="NFT_BIDS, NFT_PRICES, TOKEN_BORROW, TOKEN_PRICES or CUSTOM")
    config: Dict[str, Any] = Field(default_factory=dict)
    connection_id: str = Field(..., min_length=1)

    @field_validator('name', 'data_type', mode='before')
    @classmethod
    def strip_text(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator('config', mode='before')
    @classmethod
    def null_config(cls, v):
        return {} if v is None else v


class JobUpdateRequest(BaseModel):
    """Name, description and config are editable; the data type is fixed at creation."""

    name: Optional[str] = None
    description: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    data_type: Optional[str] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_none=True, exclude={"data_type"})


class JobActionRequest(BaseModel):
    action: str = Field(..., description="start, stop or pause")


class JobConnectionSummary(BaseModel):
    id: str
    name: Optional[str] = None
    host: str
    port: int
    database: str
    is_active: bool

    @classmethod
    def from_model(cls, connection: TenantConnection) -> "JobConnectionSummary":
        return cls(
            id=connection.id,
            name=connection.name,
            host=connection.host,
            port=connection.port,
            database=connection.database,
            is_active=connection.is_active,
        )


class LogEntryResponse(BaseModel):
    id: Optional[int] = None
    timestamp: Optional[datetime] = None
    level: LogLevel
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_model(cls, entry: IngestionLogEntry) -> "LogEntryResponse":
        return cls(**entry.model_dump(exclude={"job_id"}))


class JobResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    data_type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    status: IndexingStatus
    connection_id: str
    subscription_id: Optional[str] = None
    last_run: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    connection: Optional[JobConnectionSummary] = None
    logs: Optional[List[LogEntryResponse]] = None

    @classmethod
    def from_model(
            cls,
            job: IndexingJob,
            connection: Optional[TenantConnection] = None,
            logs: Optional[List[IngestionLogEntry]] = None,
    ) -> "JobResponse":
        data = job.model_dump(exclude={"connection", "tenant_id"})
        connection = connection or job.connection
        return cls(
            **data,
            connection=JobConnectionSummary.from_model(connection) if connection else None,
            logs=[LogEntryResponse.from_model(e) for e in logs] if logs is not None else None,
        )


class JobListResponse(BaseModel):
    items: List[JobResponse]


class LogListResponse(BaseModel):
    job_id: str
    items: List[LogEntryResponse]
