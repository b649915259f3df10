from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    APP_NAME: str = "Telesync Patient Device"
    VERSION: str = "1.0.0"

    # Local store (file-backed so unsynced data survives restarts)
    DATABASE_URL: str = "sqlite:///./telemedicine.db"

    # Remote telemedicine service
    REMOTE_API_BASE_URL: str = "https://api.telemedicine-nabha.in/v1"
    REMOTE_API_TOKEN: Optional[str] = None
    REMOTE_API_TIMEOUT: float = 10.0  # seconds, per call

    # Connectivity
    CONNECTIVITY_PROBE_URL: str = "https://clients3.google.com/generate_204"
    CONNECTIVITY_PROBE_TIMEOUT: float = 5.0
    CONNECTIVITY_POLL_INTERVAL: float = 0.0  # 0 = rely on pushed notifications only

    # Single active user per device
    PATIENT_ID: Optional[str] = None

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


settings = Settings()
