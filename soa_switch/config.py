"""Configuration management for the SOA switcher."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Literal, Sequence

from dotenv import load_dotenv
from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import Mode
from .reconcile import EligibilityRule, allow_any, require_directory_synced
from .retry import RetryPolicy

# Load .env early so BaseSettings can pick values up seamlessly.
load_dotenv()


def _split_list(value: str | Sequence[str] | None) -> list[str]:
    """Turn delimiter-separated env strings into cleaned lists."""
    if value is None:
        return []
    if isinstance(value, str):
        items = re.split(r"[;,]", value)
    else:
        items = list(value)
    return [item.strip() for item in items if item.strip()]


class Settings(BaseSettings):
    """App configuration derived from environment variables."""

    exo_tenant_id: str | None = Field(None, alias="EXO_TENANT_ID")
    exo_client_id: str = Field(..., alias="EXO_CLIENT_ID")
    exo_client_secret: str | None = Field(None, alias="EXO_CLIENT_SECRET")
    exo_organization: str | None = Field(None, alias="EXO_ORGANIZATION")
    exo_auth_mode: Literal["client_credentials", "device_code"] = Field(
        "device_code", alias="EXO_AUTH_MODE"
    )
    exo_authority: str | None = Field(None, alias="EXO_AUTHORITY")
    exo_admin_base_url: HttpUrl = Field(
        "https://outlook.office365.com/adminapi/beta", alias="EXO_ADMIN_BASE_URL"
    )
    exo_anchor_mailbox: str | None = Field(None, alias="EXO_ANCHOR_MAILBOX")
    exo_token_cache: Path = Field(Path("data/msal_token_cache.bin"), alias="EXO_TOKEN_CACHE")
    exo_page_size: int = Field(100, alias="EXO_PAGE_SIZE", ge=1, le=1000)
    exo_request_timeout: float = Field(60.0, alias="EXO_REQUEST_TIMEOUT", gt=0)

    default_mode: Mode = Field(Mode.ENABLE, alias="SOA_DEFAULT_MODE")
    simulate_only: bool = Field(False, alias="SOA_SIMULATE_ONLY")
    require_dirsync: bool = Field(True, alias="SOA_REQUIRE_DIRSYNC")
    extra_identity_columns_raw: str = Field("", alias="SOA_IDENTITY_COLUMNS")

    retry_max_attempts: int = Field(4, alias="RETRY_MAX_ATTEMPTS", ge=1)
    retry_initial_delay: float = Field(2.0, alias="RETRY_INITIAL_DELAY", ge=0)
    retry_max_delay: float = Field(30.0, alias="RETRY_MAX_DELAY", ge=0)
    max_workers: int = Field(1, alias="MAX_WORKERS", ge=1)

    outcome_history_db: Path | None = Field(
        Path("data/soa_outcomes.db"), alias="OUTCOME_HISTORY_DB"
    )
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def _validate_authentication(self):
        if self.exo_auth_mode == "client_credentials":
            if not self.exo_client_secret:
                raise ValueError("EXO_CLIENT_SECRET is required for client_credentials mode.")
            if not (self.exo_tenant_id or self.exo_authority):
                raise ValueError(
                    "EXO_TENANT_ID or EXO_AUTHORITY must be provided for client_credentials mode."
                )
        if not (self.exo_tenant_id or self.exo_organization):
            raise ValueError("EXO_TENANT_ID or EXO_ORGANIZATION is required to address the tenant.")
        return self

    @model_validator(mode="after")
    def _validate_backoff(self):
        if self.retry_max_delay < self.retry_initial_delay:
            raise ValueError("RETRY_MAX_DELAY must be greater than or equal to RETRY_INITIAL_DELAY.")
        return self

    @field_validator(
        "exo_tenant_id",
        "exo_client_secret",
        "exo_organization",
        "exo_authority",
        "exo_anchor_mailbox",
        "outcome_history_db",
        mode="before",
    )
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("default_mode", mode="before")
    @classmethod
    def _parse_mode(cls, value):
        if isinstance(value, str):
            return Mode.parse(value) or Mode.ENABLE
        return value

    @property
    def authority_url(self) -> str:
        if self.exo_authority:
            return self.exo_authority.rstrip("/")
        if self.exo_tenant_id:
            return f"https://login.microsoftonline.com/{self.exo_tenant_id}"
        return "https://login.microsoftonline.com/organizations"

    @property
    def tenant(self) -> str:
        """Tenant segment of the admin API URL: GUID or initial domain."""
        return self.exo_tenant_id or self.exo_organization or ""

    @property
    def invoke_command_url(self) -> str:
        return f"{str(self.exo_admin_base_url).rstrip('/')}/{self.tenant}/InvokeCommand"

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            initial_delay=self.retry_initial_delay,
            max_delay=self.retry_max_delay,
        )

    @property
    def eligibility(self) -> EligibilityRule:
        return require_directory_synced if self.require_dirsync else allow_any

    @property
    def extra_identity_columns(self) -> list[str]:
        return _split_list(self.extra_identity_columns_raw)
