from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings


ExecutionMode = Literal["local", "remote"]


class Settings(BaseSettings):
    env: str = "dev"
    database_url: str = "sqlite:///./data/flight_tracker.db"

    # Job execution: "local" runs jobs in-process, "remote" leaves them
    # queued for a polling agent.
    execution_mode: ExecutionMode = "local"
    local_agent_enabled: bool = False
    agent_token: str = ""

    # Remote agent poller
    agent_base_url: str = ""
    agent_poll_interval_seconds: float = 3.0

    scheduler_enabled: bool = True
    cron_schedule: str = "0 */6 * * *"
    cron_tz: str = "America/New_York"

    stuck_job_threshold_minutes: int = 30
    stuck_job_sweep_minutes: int = 0

    flex_default_window: int = 5
    flex_max_age_hours: int = 12
    context_max_age_hours: int = 6

    amadeus_client_id: str = ""
    amadeus_client_secret: str = ""
    amadeus_base_url: str = "https://test.api.amadeus.com"

    browser_executable_path: str = ""
    scraper_headless: bool = True
    screenshots_dir: Optional[str] = None

    email_provider: str = ""
    resend_api_key: str = ""
    email_from: str = "Flight Tracker <onboarding@resend.dev>"
    zapier_webhook_url: str = ""

    def model_post_init(self, __context):
        if self.env == "prod" and self.database_url.startswith("sqlite"):
            raise ValueError(
                "Production requires explicit DATABASE_URL (not SQLite)"
            )
        # Legacy switch from the original deployment
        if self.local_agent_enabled:
            self.execution_mode = "remote"

    @property
    def amadeus_configured(self) -> bool:
        return bool(self.amadeus_client_id and self.amadeus_client_secret)

    @property
    def resolved_email_provider(self) -> Optional[str]:
        if self.email_provider:
            return self.email_provider.lower()
        if self.zapier_webhook_url:
            return "zapier"
        if self.resend_api_key:
            return "resend"
        return None

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()
