from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FS_",
    )

    # Logging
    log_dir: str = "logs"
    log_level: str = "INFO"

    # Backtest engine
    risk_free_rate: float = 0.10  # annual, CDI-like reference
    lot_size: float | None = 1.0  # None = fractional shares
    min_rebalance_sell_value: float = 100.0
    allocation_tolerance: float = 0.005
    min_history_months: int = 12

    # Debt simulation
    default_monthly_tr: float = 0.001
    debt_max_months: int = 360

    # Result cache
    cache_ttl: int = 300  # seconds
    cache_maxsize: int = 256

    # Parallelization
    max_workers: int = 4
