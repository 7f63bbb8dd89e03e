from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "AgencyOps Automation"
    ENVIRONMENT: str = "development"  # "development", "staging", "production"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite:///./agencyops.db"

    # Microsoft Graph (mail sync)
    MICROSOFT_CLIENT_ID: str = ""
    MICROSOFT_CLIENT_SECRET: str = ""
    MICROSOFT_TENANT_ID: str = "common"
    MICROSOFT_REDIRECT_URI: str = "http://localhost:5000/api/auth/microsoft/callback"
    MICROSOFT_GRAPH_BASE: str = "https://graph.microsoft.com/v1.0"
    MICROSOFT_LOGIN_BASE: str = "https://login.microsoftonline.com"
    MICROSOFT_CALENDAR_MAILBOX: str = ""  # UPN to force a shared calendar; empty means /me

    # Dialpad telephony
    DIALPAD_API_KEY: str = ""
    DIALPAD_API_BASE: str = "https://dialpad.com/api/v2"

    # Outbound call protection
    REMOTE_TIMEOUT_SECONDS: float = 5.0
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_RESET_TIMEOUT_SECONDS: float = 30.0

    # Background jobs
    RUN_SCHEDULER: bool = True
    SCHEDULER_TIMEZONE: str = "America/New_York"
    SCHEDULER_INITIAL_DELAY_SECONDS: float = 60.0
    SCHEDULER_MAX_INSTANCES: int = 3  # Overlapping firings are tolerated, not prevented
    EMAIL_SYNC_CRON: str = "*/30 * * * *"
    EMAIL_SYNC_FOLDERS: list[str] = ["inbox", "sent", "spam"]
    EMAIL_SYNC_PAGE_SIZE: int = 50
    VISIT_SLA_CRON: str = "0 * * * *"
    VISIT_SLA_BATCH_SIZE: int = 200

    # Error tracking
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.1

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")


settings = Settings()
