from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./import_hub.db"
    log_level: str = "INFO"
    date_default_dayfirst: bool = False
    upload_max_file_size_mb: int = 50

    # Parsing / preview
    preview_rows: int = 10

    # Import pipeline
    import_sync_threshold: int = 100  # Datasets at or above this size go through the queue
    import_batch_size: int = 100
    import_batch_pause_seconds: float = 0.1  # Pause between queued batches
    validation_yield_every: int = 100  # Rows validated between cooperative checkpoints
    create_target_tables: bool = True  # Create the known target tables at startup if missing

    # Job queue
    queue_autostart: bool = True
    queue_poll_interval_seconds: float = 2.0
    queue_dispatch_limit: int = 5
    queue_high_priority_threshold: int = 1000  # Row count above which imports are queued as "high"
    queue_retention_days: int = 7
    queue_stats_window_hours: int = 24

    model_config = ConfigDict(env_file=".env", extra="ignore")


settings = Settings()
