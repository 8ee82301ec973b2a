from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    # App
    APP_ENV: str = "development"
    DEBUG: bool = True
    BASE_URL: str = "https://sso-smart-service.example.go.th"

    # MongoDB
    MONGO_URL: str = "mongodb://localhost:27017"
    DB_NAME: str = "sso_smart_service"

    # JWT (member / admin sessions)
    JWT_SECRET: str = "changeme_minimum_32_chars_here_please"

    # Scheduler shared secret; absent means every trigger is rejected
    CRON_SECRET: Optional[str] = None

    # LINE Messaging API
    LINE_CHANNEL_ACCESS_TOKEN: Optional[str] = None
    LINE_PUSH_URL: str = "https://api.line.me/v2/bot/message/push"

    # SMS provider (optional; unset disables the sms channel only)
    SMS_API_URL:   Optional[str] = None
    SMS_API_KEY:   Optional[str] = None
    SMS_SENDER_ID: str = "SSO"

    # Delivery
    HTTP_TIMEOUT_SECONDS: float = 10.0
    NOTIFY_BATCH_SIZE:    int   = 10    # concurrent dispatches per chunk

    # Prediction trigger
    PREDICT_RATE_LIMIT:        str  = "30/minute"
    PREDICT_SCHEDULE_ENABLED:  bool = False
    PREDICT_SCHEDULE_HOUR_UTC: int  = 1     # 01:00 UTC = 08:00 ICT

    model_config = SettingsConfigDict(
        env_file=[".env", "../.env"],  # backend/ first, then repo root
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() == "production"


settings = Settings()
