from functools import lru_cache

from pydantic_settings import BaseSettings
from pydantic import Field


class EnvSettings(BaseSettings):
    # AD
    ldap_url: str = Field("", alias="LDAP_URL")  # ldaps://dc1.example.com:636
    ldap_base_dn: str = Field("", alias="LDAP_BASE_DN")
    ldap_service_user: str = Field("", alias="LDAP_SERVICE_USER")
    ldap_service_password: str = Field("", alias="LDAP_SERVICE_PASSWORD")
    ldap_auth_group: str = Field("", alias="LDAP_AUTH_GROUP")  # ';' separated group DNs
    ldap_starttls: bool = Field(False, alias="LDAP_STARTTLS")
    ldap_tls_validate: bool = Field(False, alias="LDAP_TLS_VALIDATE")
    ldap_connect_timeout_ms: int = Field(500, alias="LDAP_CONNECT_TIMEOUT_MS")
    ldap_read_timeout_ms: int = Field(5000, alias="LDAP_READ_TIMEOUT_MS")
    ldap_pool_timeout_s: int = Field(60, alias="LDAP_POOL_TIMEOUT_S")

    # User info
    mail_domain: str = Field("", alias="MAIL_DOMAIN")  # e.g. @example.com
    pwd_duration_days: int = Field(143, alias="PWD_DURATION_DAYS")

    # Sessions
    session_timeout_s: int = Field(24 * 60 * 60, alias="SESSION_TIMEOUT_S")
    worker_count: int = Field(16, alias="WORKER_COUNT")

    # Suggestions
    index_db_url: str = Field("sqlite:///data/users.db", alias="INDEX_DB_URL")
    results_per_page: int = Field(1000, alias="RESULTS_PER_PAGE")
    max_pages: int = Field(2, alias="MAX_PAGES")
    suggestion_timeout_ms: int = Field(100, alias="SUGGESTION_TIMEOUT_MS")

    # Web
    bind_host: str = Field("0.0.0.0", alias="BIND_HOST")
    bind_port: int = Field(8080, alias="BIND_PORT")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_retention_days: int = Field(30, alias="LOG_RETENTION_DAYS")

    class Config:
        populate_by_name = True


@lru_cache(maxsize=1)
def get_env() -> EnvSettings:
    return EnvSettings()
