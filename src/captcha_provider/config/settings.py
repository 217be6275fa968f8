"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class CountConfig(BaseModel):
    count: int = Field(default=0, ge=0)


class SolvedCountConfig(BaseModel):
    count: int = Field(default=1, gt=0)


class CaptchaCountsConfig(BaseModel):
    """Minimum number of solved and unsolved captchas a dataset must carry."""

    solved: SolvedCountConfig = Field(default_factory=SolvedCountConfig)
    unsolved: CountConfig = Field(default_factory=CountConfig)


class CaptchaSolutionConfig(BaseModel):
    """Thresholds applied when recalculating solutions for unsolved captchas."""

    required_number_of_solutions: int = Field(default=2, ge=2)
    solution_winning_percentage: float = Field(default=80.0, gt=0.0, le=100.0)
    captcha_block_recency: int = Field(default=10, ge=2)
    captcha_file_path: str = ""


class SchedulerConfig(BaseModel):
    # None disables reaping of abandoned Running records.
    running_task_stale_after_s: float | None = Field(default=None, gt=0.0)


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "captcha-provider"
    app_env: str = "dev"
    log_level: str = "INFO"
    database_url: str = ""
    external_sink_uri: str = ""
    captchas: CaptchaCountsConfig = Field(default_factory=CaptchaCountsConfig)
    captcha_solutions: CaptchaSolutionConfig = Field(default_factory=CaptchaSolutionConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    model_config = SettingsConfigDict(
        env_prefix="CAPTCHA_PROVIDER_",
        env_nested_delimiter="__",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("CAPTCHA_PROVIDER_DB_URL", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
