"""
Centralized configuration management for the checklist report service.

Pydantic v2 settings management. External credentials are optional at
startup: the service boots without them and the component that needs a
missing value raises ConfigurationError on first use.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BUNDLED_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"


# -------------------------------------------------------------------------
# Reusable Type Aliases
# -------------------------------------------------------------------------

OptionalEnv = Annotated[
    Optional[str],
    Field(default=None),
]

SensitiveEnv = Annotated[
    Optional[SecretStr],
    Field(default=None, description="Sensitive credential, redacted from logs"),
]

ColumnName = Annotated[
    str,
    Field(pattern=r"^$|^[A-Za-z_][A-Za-z0-9_]*$"),
]


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Application settings parsed from the environment.
    """

    # ---------------------------------------------------------------------
    # Data store (Supabase PostgREST + Storage)
    # ---------------------------------------------------------------------

    supabase_url: OptionalEnv
    supabase_service_role_key: SensitiveEnv

    report_table: Annotated[
        str,
        Field(
            default="driver_daily_reports",
            pattern=r"^[A-Za-z_][A-Za-z0-9_]*$",
        ),
    ]

    # ---------------------------------------------------------------------
    # Templates
    # ---------------------------------------------------------------------

    checklist_template_id: Annotated[
        str,
        Field(
            default="default",
            validation_alias=AliasChoices(
                "checklist_template_id",
                "vite_checklist_template_id",
            ),
        ),
    ]

    template_dir: Annotated[
        Path,
        Field(
            default=BUNDLED_TEMPLATE_DIR,
            description="Directory holding bundled report templates",
        ),
    ]

    # ---------------------------------------------------------------------
    # Google service account + Drive
    # ---------------------------------------------------------------------

    google_service_account_email: Annotated[
        Optional[str],
        Field(
            default=None,
            validation_alias=AliasChoices(
                "google_service_account_email",
                "google_client_email",
            ),
        ),
    ]

    google_service_account_private_key: Annotated[
        Optional[SecretStr],
        Field(
            default=None,
            validation_alias=AliasChoices(
                "google_service_account_private_key",
                "google_private_key",
            ),
        ),
    ]

    google_drive_folder_id: OptionalEnv

    google_drive_share_with_anyone: bool = True

    google_token_uri: str = "https://oauth2.googleapis.com/token"
    google_drive_scope: str = "https://www.googleapis.com/auth/drive.file"
    google_drive_api_url: str = "https://www.googleapis.com/drive/v3"
    google_drive_upload_url: str = "https://www.googleapis.com/upload/drive/v3"

    # ---------------------------------------------------------------------
    # Report record output columns
    # ---------------------------------------------------------------------

    driver_report_url_column: ColumnName = "checklist_report_url"
    driver_report_file_id_column: ColumnName = "checklist_report_file_id"

    # ---------------------------------------------------------------------
    # Operational Boundaries
    # ---------------------------------------------------------------------

    http_timeout_seconds: Annotated[
        float,
        Field(default=30.0, gt=0, le=120),
    ]

    token_refresh_margin_seconds: Annotated[
        int,
        Field(default=60, ge=0, le=600),
    ]

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
        frozen=True,
    )

    @field_validator("google_service_account_private_key", mode="before")
    @classmethod
    def unescape_private_key(cls, v):
        # Keys pasted into env files usually carry literal "\n" sequences.
        if isinstance(v, str):
            return v.replace("\\n", "\n")
        return v

    @field_validator("supabase_url", "google_drive_folder_id", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v


# -------------------------------------------------------------------------
# Settings Dependency Provider
# -------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Dependency injection provider for application settings.
    """
    return Settings()  # singleton within process
