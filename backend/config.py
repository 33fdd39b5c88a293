from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    gemini_api_key: str = ""
    ai_model: str = "gemini-2.5-flash"
    # Second attempt when the primary model errors out
    ai_backup_model: str = "gemini-2.5-flash-lite"
    ai_backup_enabled: bool = True
    ai_max_output_tokens: int = 100
    ai_temperature: float = 0.9
    ai_timeout: float = 10.0

    # Room rules
    min_players: int = 4
    max_players: int = 8
    discussion_seconds: float = 180.0
    voting_seconds: float = 30.0
    ai_reply_min_delay: float = 2.0
    ai_reply_max_delay: float = 5.0
    max_message_length: int = 500

    # Runtime
    tick_interval: float = 1.0
    send_timeout: float = 5.0
    ended_room_ttl: float = 600.0
    sweep_interval: float = 60.0

    # CORS origins — set ALLOWED_ORIGINS env var for production (JSON list)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
