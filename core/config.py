from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./spareflow.db"  # Default to SQLite
    LOG_LEVEL: str = "INFO"
    RUN_MIGRATIONS_ON_STARTUP: bool = True

    # Approval policy
    DEFAULT_AUTO_APPROVE_LIMIT: float = 500.0  # Used when a technician has no limit row
    APPROVAL_LEVEL_THRESHOLDS: List[float] = [1000.0, 5000.0]
    AUTO_ISSUE_ON_APPROVAL: bool = False

    # Reservations
    RESERVATION_TTL_HOURS: int = 24
    RESERVATION_SWEEP_MINUTES: int = 15

    # Costing
    TAX_PERCENT: float = 18.0
    OVERHEAD_PERCENT: float = 10.0
    LABOR_MARKUP_PERCENT: float = 20.0
    DEFAULT_LABOR_COST: float = 500.0

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
    }


settings = Settings()
