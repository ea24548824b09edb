import os
from datetime import time
from functools import lru_cache
from pathlib import Path

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SECRET_FIELDS = {"commerce_api_key", "smtp_password"}


def default_sound_alert_command() -> str:
    """Return the alert command for the current platform."""

    if os.name == "nt":
        return (
            "powershell -Command \"$end=(Get-Date).AddSeconds(8); "
            "while ((Get-Date) -lt $end) { [Console]::Beep(1000, 500); Start-Sleep -Milliseconds 200 }\""
        )
    return "paplay /usr/share/sounds/freedesktop/stereo/complete.oga"


class Settings(BaseSettings):
    """Immutable configuration snapshot loaded from the environment."""

    app_name: str = Field(default="Order Invoicer")
    environment: str = Field(default="development")

    # Commerce API
    commerce_api_base_url: AnyHttpUrl
    commerce_api_key: str = Field(min_length=1)
    commerce_api_timeout: float = Field(default=30.0, gt=0)
    fetch_lookback_hours: float = Field(default=2.0, gt=0)
    fetch_limit: int = Field(default=50, ge=1, le=200)
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=10.0, ge=0)

    # Polling
    polling_interval_minutes: int = Field(default=5, ge=1, le=1440)
    initial_run_delay: float = Field(default=5.0, ge=0)
    shutdown_grace_period: float = Field(default=30.0, ge=0)

    # Printing
    auto_print: bool = False
    printer_name: str = "Default Printer"
    print_copies: int = Field(default=1, ge=1)
    print_command: str = "lp"

    # Email
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    notification_email: str | None = None

    # Shop identity
    shop_name: str = Field(min_length=1)
    shop_address: str = Field(min_length=1)
    shop_email: str = Field(min_length=1)
    shop_phone: str = ""
    shop_logo_url: str = ""
    shop_registration_1: str = ""
    shop_registration_2: str = ""
    country: str = "GR"
    currency: str = "EUR"
    tax_rate: float = Field(default=0.24, ge=0, le=1)

    # Local alerts
    sound_alert_enabled: bool = False
    sound_alert_command: str = Field(default_factory=default_sound_alert_command)
    desktop_notifications_enabled: bool = True
    desktop_notify_command: str = "notify-send"

    # Status API
    dashboard_enabled: bool = False
    dashboard_host: str = "127.0.0.1"
    dashboard_port: int = Field(default=3000, ge=1000, le=65535)

    # Storage
    data_dir: Path = Path("data")
    output_dir: Path = Path("generated-invoices")
    logs_dir: Path = Path("logs")
    reports_dir: Path = Path("reports")
    template_path: Path | None = None
    render_timeout: float = Field(default=30.0, gt=0)

    # Housekeeping
    log_level: str = "INFO"
    report_retention_days: int = Field(default=30, ge=1)
    timezone: str = "Europe/Athens"
    daily_report_time: time = time(9, 0)

    model_config = SettingsConfigDict(
        env_prefix="INVOICER_",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    @property
    def ledger_path(self) -> Path:
        return self.data_dir / "processed-orders.json"

    @property
    def dead_letter_path(self) -> Path:
        return self.data_dir / "unrenderable-orders.json"

    @property
    def log_file(self) -> Path:
        return self.logs_dir / "app.log"

    @property
    def required_directories(self) -> list[Path]:
        return [self.logs_dir, self.data_dir, self.output_dir, self.reports_dir]

    @property
    def email_configured(self) -> bool:
        return bool(self.smtp_user and self.notification_email)

    @property
    def vat_number(self) -> str:
        if not self.shop_registration_1:
            return ""
        return f"{self.country}{self.shop_registration_1}"

    def safe_dump(self) -> dict:
        """Return the settings without secrets, for startup logging."""

        return self.model_dump(mode="json", exclude=SECRET_FIELDS)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
