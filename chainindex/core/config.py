import os
import sys
from typing import Optional, Dict

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from psycopg.conninfo import make_conninfo


_ENV_LOADED = False


def _load_env_file(path: str, allow_override: bool = False) -> None:
    """
    Minimal .env loader: loads KEY=VALUE pairs into os.environ.
    - Ignores empty lines and lines starting with '#'
    - Supports values wrapped in single or double quotes
    - By default, does not override existing environment variables
    """
    if not path or not os.path.exists(path):
        return
    try:
        with open(path, "r", encoding="utf-8") as f:
            for raw_line in f:
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                if line.startswith("export "):
                    line = line[len("export "):].strip()
                if "=" not in line:
                    continue
                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip()
                if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
                    value = value[1:-1]
                if allow_override or key not in os.environ:
                    os.environ[key] = value
    except PermissionError as e:
        print(f"FATAL: Permission denied reading environment file {path}: {e}", file=sys.stderr)
        raise


def load_env_if_present(force_reload: bool = False) -> None:
    """
    Load environment variables from .env files in order of precedence:
    1. .env.local (highest priority, not committed)
    2. .env.{ENVIRONMENT} (environment-specific)
    3. .env.common (common variables)
    4. .env (default)
    CHAININDEX_ENV_FILE, when set, replaces the whole chain with a single file.
    """
    global _ENV_LOADED
    if _ENV_LOADED and not force_reload:
        return

    custom = os.environ.get("CHAININDEX_ENV_FILE")
    if custom:
        _load_env_file(custom, allow_override=False)
    else:
        env_files = ['.env.local', '.env.common', '.env']
        environment = os.environ.get('ENVIRONMENT', '').strip()
        if environment:
            env_files.insert(1, f'.env.{environment}')
        for env_file in env_files:
            _load_env_file(env_file, allow_override=False)

    _ENV_LOADED = True


MANDATORY_ENV_VARS = [
    # Metadata store
    'POSTGRES_USER', 'POSTGRES_PASSWORD', 'POSTGRES_DB', 'POSTGRES_HOST', 'POSTGRES_PORT',
    # Webhook ingestion
    'CHAININDEX_PUBLIC_URL', 'CHAININDEX_WEBHOOK_SECRET',
    # Event source
    'HELIUS_API_URL', 'HELIUS_API_KEY',
]


def _is_secret_var(name: str) -> bool:
    return any(part in name for part in ("PASSWORD", "SECRET", "KEY"))


def validate_mandatory_env_vars() -> None:
    """
    Validate that all mandatory environment variables are present and not empty.
    Exit immediately if any are missing. Secret values are masked in the report.
    """
    missing_vars = [var for var in MANDATORY_ENV_VARS if var not in os.environ]
    empty_vars = [var for var in MANDATORY_ENV_VARS if var in os.environ and not os.environ[var].strip()]

    if missing_vars or empty_vars:
        error_msg = []
        if missing_vars:
            error_msg.append(f"Missing environment variables: {', '.join(missing_vars)}")
        if empty_vars:
            error_msg.append(f"Empty environment variables: {', '.join(empty_vars)}")

        print(f"FATAL: {' | '.join(error_msg)}", file=sys.stderr)
        print("FATAL: Required variables:", file=sys.stderr)
        for var in MANDATORY_ENV_VARS:
            value = os.environ.get(var, '')
            if value.strip():
                shown = '*' * len(value) if _is_secret_var(var) else value
                print(f"  {var}={shown}", file=sys.stderr)
            else:
                print(f"  {var}=<MISSING OR EMPTY>", file=sys.stderr)
        sys.exit(1)


class Settings(BaseModel):
    """
    chainindex application settings from environment variables.
    """
    model_config = ConfigDict(validate_assignment=True, populate_by_name=True)

    app_name: str = "chainindex"
    app_version: str = "0.1.0"

    # HTTP server
    host: str = Field("0.0.0.0", alias="CHAININDEX_HOST")
    port: int = Field(8080, alias="CHAININDEX_PORT")
    debug: bool = Field(False, alias="CHAININDEX_DEBUG")

    # Metadata store (connections, jobs, logs)
    postgres_user: str = Field(..., alias="POSTGRES_USER")
    postgres_password: str = Field(..., alias="POSTGRES_PASSWORD", repr=False)
    postgres_db: str = Field(..., alias="POSTGRES_DB")
    postgres_host: str = Field(..., alias="POSTGRES_HOST")
    postgres_port: int = Field(5432, alias="POSTGRES_PORT")
    schema_validate: bool = Field(True, alias="CHAININDEX_SCHEMA_VALIDATE")

    # Webhook ingestion
    public_url: str = Field(..., alias="CHAININDEX_PUBLIC_URL")
    webhook_secret: str = Field(..., alias="CHAININDEX_WEBHOOK_SECRET", repr=False)

    # Event source (Helius)
    helius_api_url: str = Field(..., alias="HELIUS_API_URL")
    helius_api_key: str = Field(..., alias="HELIUS_API_KEY", repr=False)
    event_source_timeout: float = Field(10.0, alias="CHAININDEX_EVENT_SOURCE_TIMEOUT_SECONDS")

    # Tenant pools
    tenant_pool_min_size: int = Field(1, alias="CHAININDEX_TENANT_POOL_MIN_SIZE")
    tenant_pool_max_size: int = Field(5, alias="CHAININDEX_TENANT_POOL_MAX_SIZE")
    tenant_pool_timeout: float = Field(30.0, alias="CHAININDEX_TENANT_POOL_TIMEOUT_SECONDS")
    tenant_pool_max_waiting: int = Field(20, alias="CHAININDEX_TENANT_POOL_MAX_WAITING")
    tenant_pool_max_lifetime: float = Field(1800.0, alias="CHAININDEX_TENANT_POOL_MAX_LIFETIME_SECONDS")
    tenant_pool_max_idle: float = Field(300.0, alias="CHAININDEX_TENANT_POOL_MAX_IDLE_SECONDS")
    statement_timeout_ms: int = Field(30000, alias="CHAININDEX_STATEMENT_TIMEOUT_MS")
    probe_timeout: float = Field(5.0, alias="CHAININDEX_PROBE_TIMEOUT_SECONDS")

    @field_validator('postgres_user', 'postgres_password', 'postgres_db', 'postgres_host',
                     'public_url', 'webhook_secret', 'helius_api_url', 'helius_api_key', mode='before')
    @classmethod
    def validate_not_empty_str(cls, v):
        if not isinstance(v, str) or not v.strip():
            raise ValueError("Value cannot be empty or whitespace only")
        return v.strip()

    @field_validator('debug', 'schema_validate', mode='before')
    @classmethod
    def coerce_bool(cls, v):
        if isinstance(v, bool):
            return v
        if not isinstance(v, str):
            raise ValueError("Expected string for boolean field")
        val = v.strip().lower()
        if val in ("true", "1", "yes", "y", "on"):
            return True
        if val in ("false", "0", "no", "n", "off"):
            return False
        raise ValueError(f"Invalid boolean value: {v}")

    @model_validator(mode='after')
    def validate_ranges(self):
        for name in ("port", "postgres_port"):
            value = getattr(self, name)
            if value < 1 or value > 65535:
                raise ValueError(f"Invalid {name}: {value}")
        if self.tenant_pool_max_size < 1:
            raise ValueError("CHAININDEX_TENANT_POOL_MAX_SIZE must be >= 1")
        if self.tenant_pool_min_size < 0 or self.tenant_pool_min_size > self.tenant_pool_max_size:
            raise ValueError("CHAININDEX_TENANT_POOL_MIN_SIZE must be between 0 and the max size")
        for name in ("tenant_pool_timeout", "probe_timeout", "event_source_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        return self

    @property
    def metadata_conn_string(self) -> str:
        """Connection string for the metadata store."""
        return make_conninfo(
            dbname=self.postgres_db,
            user=self.postgres_user,
            password=self.postgres_password,
            host=self.postgres_host,
            port=self.postgres_port,
        )

    @property
    def webhook_base_url(self) -> str:
        return f"{self.public_url.rstrip('/')}/webhooks/helius"

    def webhook_callback_url(self, job_id: str) -> str:
        """URL the event source calls for a job."""
        return f"{self.webhook_base_url}/{job_id}"


_settings: Optional[Settings] = None


def settings_from_env(environ: Optional[Dict[str, str]] = None) -> Settings:
    """Build Settings from an environment mapping (only known aliases are passed through)."""
    environ = dict(os.environ if environ is None else environ)
    aliases = {field.alias for field in Settings.model_fields.values() if field.alias}
    return Settings(**{key: value for key, value in environ.items() if key in aliases})


def get_settings(reload: bool = False) -> Settings:
    """
    Get application settings. Validates environment variables on first call.
    Set reload=True to force reloading from current environment.
    """
    global _settings
    if _settings is None or reload:
        load_env_if_present(force_reload=reload)
        validate_mandatory_env_vars()
        _settings = settings_from_env()
    return _settings
