"""Runtime configuration."""

from captcha_provider.config.settings import (
    CaptchaCountsConfig,
    CaptchaSolutionConfig,
    SchedulerConfig,
    Settings,
    get_settings,
)

__all__ = [
    "CaptchaCountsConfig",
    "CaptchaSolutionConfig",
    "SchedulerConfig",
    "Settings",
    "get_settings",
]
