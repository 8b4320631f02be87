from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./liftlog.db"
    log_level: str = "INFO"
    active_workout_expiry_hours: int = 12
    expiry_sweep_minutes: int = 15
    enable_expiry_sweep: bool = True
    completed_page_size: int = 10

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
