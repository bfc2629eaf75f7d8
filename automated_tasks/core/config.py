from collections.abc import Iterable
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "AUTOMATED_TASKS_"


class ConfigurationError(Exception):
    """Raised when settings required to create a connection are missing."""


class Settings(BaseSettings):
    environment: str = "dev"
    debug: bool = False
    api_internal_access_host: str | None = None
    api_internal_directories_host: str | None = None
    api_internal_organisations_host: str | None = None
    api_internal_tenant: str | None = None
    api_internal_authority_host: str | None = None
    api_internal_client_id: str | None = None
    api_internal_client_secret: str | None = None
    api_internal_resource: str | None = None
    api_timeout_seconds: float = 10.0
    database_directories_url: str | None = None
    database_organisations_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    audit_connection_string: str | None = None
    audit_topic_name: str | None = None
    redis_connection_string: str | None = None
    notifications_redis_db: int = 4
    otel_enabled: bool = True
    otel_service_name: str = "automated-tasks"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")


def require_settings(settings: Settings, names: Iterable[str], connection_type: str) -> None:
    missing = [name for name in names if not _is_set(getattr(settings, name, None))]
    if not missing:
        return
    env_names = ", ".join(f"{ENV_PREFIX}{name.upper()}" for name in missing)
    verb = "are" if len(missing) > 1 else "is"
    raise ConfigurationError(f"{env_names} {verb} missing, cannot create {connection_type} connection!")


def _is_set(value: object) -> bool:
    if isinstance(value, str):
        return bool(value.strip())
    return value is not None


@lru_cache
def get_settings() -> Settings:
    return Settings()
