from pydantic_settings import BaseSettings, SettingsConfigDict
class Settings(BaseSettings):
    APP_ENV: str = "dev"
    APP_SECRET: str
    DB_URL: str = "sqlite:///./stockledger.db"
    JWT_ISS: str = "stockledger"
    TZ: str = "UTC"  # calendar-day boundaries for daily rollups
    LOG_LEVEL: str = "INFO"
    DEFAULT_CURRENCY: str = "TRY"

    # analytics knobs
    ROLLING_WINDOWS: list[int] = [30, 60, 90]
    ABC_A_THRESHOLD: float = 80.0
    ABC_B_THRESHOLD: float = 95.0
    DEPLETION_WINDOW_DAYS: int = 30
    DEPLETION_THRESHOLD_DAYS: float = 30.0
    DORMANT_DAYS: int = 60
    MOVEMENTS_PAGE_SIZE: int = 50
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
settings = Settings()
