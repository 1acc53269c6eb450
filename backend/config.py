from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List, Literal


class Settings(BaseSettings):
    # "memory" keeps games in-process (tests, local dev); "firestore" is durable
    storage_backend: Literal["memory", "firestore"] = "memory"
    google_cloud_project: str = ""
    google_application_credentials: str = ""
    firestore_emulator_host: Optional[str] = None

    # CORS origins: set ALLOWED_ORIGINS env var for production (JSON list)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    debug: bool = False
    log_level: str = "INFO"

    # Shared secret for the forced admin reset endpoint; empty disables it
    admin_token: str = ""

    # Lobby rules
    min_players: int = 5
    max_players: int = 18

    # Timeouts (seconds)
    night_action_timeout_seconds: float = 90.0
    hunter_shoot_timeout_seconds: float = 60.0
    day_vote_timeout_seconds: float = 180.0
    lobby_timeout_seconds: float = 3600.0
    # Upper bound for a single mutation inside the game gate
    gate_timeout_seconds: float = 30.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
