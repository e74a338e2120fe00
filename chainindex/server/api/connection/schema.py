"""
Connection API Schemas - Request/Response models for tenant database connections.

The password is accepted on create/update and never returned.
"""

from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field, SecretStr, field_validator

from chainindex.core.models import TenantConnection


class ConnectionCreateRequest(BaseModel):
    """Request schema for registering a tenant database."""

    name: str = Field(..., min_length=1, description="Display name")
    host: str = Field(..., min_length=1)
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    password: SecretStr = Field(..., description="Database password; stored, never returned")

    @field_validator('name', 'host', 'database', 'username', mode='before')
    @classmethod
    def strip_text(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator('password')
    @classmethod
    def password_not_empty(cls, v: SecretStr):
        if not v.get_secret_value():
            raise ValueError("password cannot be empty")
        return v


class ConnectionUpdateRequest(BaseModel):
    """Partial update; omitted fields keep their stored value."""

    name: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[SecretStr] = None

    @field_validator('name', 'host', 'database', 'username', mode='before')
    @classmethod
    def strip_text(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValueError("value cannot be empty")
        return v

    def changes(self) -> dict:
        data = self.model_dump(exclude_none=True)
        if self.password is not None:
            data["password"] = self.password.get_secret_value()
        return data

    @property
    def touches_credentials(self) -> bool:
        return any(
            getattr(self, name) is not None
            for name in ("host", "port", "database", "username", "password")
        )


class ConnectionResponse(BaseModel):
    """Connection as returned by the API, without the password."""

    id: str
    name: Optional[str] = None
    host: str
    port: int
    database: str
    username: str
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, connection: TenantConnection) -> "ConnectionResponse":
        return cls(**connection.model_dump(exclude={"password", "tenant_id"}))


class ConnectionListResponse(BaseModel):
    items: List[ConnectionResponse]


class ConnectionTestResponse(BaseModel):
    id: str
    is_active: bool
