"""agentsched configuration schema — YAML + Pydantic + env override."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ════════════════════════════════════════════════════════════
# SUB-CONFIGS (nested BaseModel)
# ════════════════════════════════════════════════════════════


class SchedulerConfig(BaseModel):
    """Trigger loop + dispatcher (scheduler.*)."""

    enabled: bool = True
    tick_seconds: float = 30.0
    max_concurrency: int = 10
    run_timeout_s: float = 900.0  # 0 = no timeout
    min_interval_minutes: int = 1
    run_summary_limit: int = 5  # runs nested in schedule list/get responses
    recover_interrupted_runs: bool = True


class ExecutorConfig(BaseModel):
    """External agent executor (executor.*)."""

    base_url: str = "http://localhost:3000"
    execute_path: str = "/agents/{agent_id}/execute"
    api_key: str = ""
    timeout: float = 900.0


class DatabaseConfig(BaseModel):
    path: str = "data/agentsched.db"


class LoggingConfig(BaseModel):
    level: str = "INFO"


# ════════════════════════════════════════════════════════════
# ROOT CONFIG (BaseSettings, env + .env support)
# ════════════════════════════════════════════════════════════


class Config(BaseSettings):
    """
    Root configuration.

    Priority: YAML (init kwargs) > env vars > .env > defaults

    Env override examples:
        AGENTSCHED_SCHEDULER__TICK_SECONDS=15
        AGENTSCHED_DATABASE__PATH=data/prod.db
        AGENTSCHED_EXECUTOR__BASE_URL=http://agents:3000
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTSCHED_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # ── Computed properties ─────────────────────────────────

    @property
    def db_path(self) -> Path:
        return Path(self.database.path)
