from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./formulas.db"
    log_level: str = "INFO"
    app_url: str = "http://localhost:8000"

    # Remote ingredient catalog (empty = use the built-in catalog)
    catalog_url: str = ""
    catalog_timeout_seconds: float = 5.0

    # Write a version-change record for every new version, not only reverts
    log_all_version_changes: bool = False

    # Review reminder scheduler
    scheduler_enabled: bool = True
    review_reminder_hour: int = 9  # UTC

    # Twilio Configuration for SMS
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""  # Your Twilio phone number


@lru_cache
def get_settings() -> Settings:
    return Settings()
