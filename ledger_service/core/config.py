from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Balances within this distance of zero are treated as settled
    LEDGER_TOLERANCE: Decimal = Decimal("0.01")
    # Quantum used when rounding transfer amounts and summaries
    LEDGER_PRECISION: Decimal = Decimal("0.01")
    PLANNER_MAX_ITERATIONS: int = 1000
    LOG_LEVEL: str = "INFO"


settings = Settings()
