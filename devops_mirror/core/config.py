"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    APP_NAME: str = "Azure DevOps Work Item Mirror"
    ENV: str = "development"

    DATABASE_URL: str = "postgresql+psycopg://postgres@localhost:5432/work_items"
    LOG_LEVEL: str = "INFO"

    # azure devops credentials
    AZURE_DEVOPS_BASE_URL: str = "https://dev.azure.com"
    AZURE_DEVOPS_ORGANIZATION: str = ""
    AZURE_DEVOPS_PROJECT: str = ""
    AZURE_DEVOPS_PAT: str = ""
    AZURE_DEVOPS_API_VERSION: str = "7.0"
    AZURE_DEVOPS_COMMENTS_API_VERSION: str = "7.0-preview.3"
    AZURE_DEVOPS_HTTP_TIMEOUT_SECONDS: float = 30.0

    # Kept as raw text so bad values fall back with a warning instead of failing startup.
    AZURE_DEVOPS_SYNC_INTERVAL_MINUTES: str = ""
    AZURE_DEVOPS_SYNC_CONCURRENCY: str = ""
    AZURE_DEVOPS_SYNC_DETAILED: bool = True
    AZURE_DEVOPS_USER_EMAILS: str = ""

    model_config = SettingsConfigDict(env_file=str(BASE_DIR / ".env"), env_file_encoding="utf-8", extra="ignore")

    @property
    def user_emails(self) -> list[str]:
        return [email.strip() for email in self.AZURE_DEVOPS_USER_EMAILS.split(",") if email.strip()]

    @property
    def azure_devops_ready(self) -> bool:
        return bool(
            self.AZURE_DEVOPS_ORGANIZATION.strip()
            and self.AZURE_DEVOPS_PROJECT.strip()
            and self.AZURE_DEVOPS_PAT.strip()
        )


settings = Settings()
