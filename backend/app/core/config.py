"""Application configuration using pydantic-settings."""
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[3] / ".env"),
        case_sensitive=False,
    )

    # Application
    log_level: str = "INFO"
    delivery_db_path: str = "./data/deliveries.db"
    auth_enabled: bool = False
    # `token:actor` comma-separated pairs, used to name the actor in history
    actor_tokens: str = ""
    default_actor: str = "api"

    # Chat ingestion
    group_id: str | None = None
    default_agency_id: int | None = None
    bot_actor: str = "bot"

    # Confirmation messages back to the group
    send_confirmations: bool = False
    confirmation_webhook_url: str = ""
    confirmation_timeout_seconds: float = 5.0

    # Flat fees for statuses that are not priced by quartier
    pickup_fee: float = 1000.0
    zone1_fee: float = 500.0
    zone2_fee: float = 1000.0

    def confirmations_enabled(self) -> bool:
        return bool(self.send_confirmations and (self.confirmation_webhook_url or "").strip())

    def accepts_group(self, group_id: str | None) -> bool:
        """Only the configured group is processed when GROUP_ID is set."""
        target = (self.group_id or "").strip()
        if not target:
            return True
        return (group_id or "").strip() == target


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
