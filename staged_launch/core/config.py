"""Runtime settings for the launch controller."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DEBUG: bool = False
    HOST: str = "0.0.0.0"  # nosec B104
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    ENVIRONMENT: str = "production"

    # Launch configuration
    LAUNCH_CONFIG_PATH: str = "config/launch_configs.yaml"
    METRICS_RETENTION_HOURS: int = 24
    VALIDATE_ON_ADVANCE: bool = True
    ADVANCE_RETRY_MINUTES: float = 0  # 0 disables retry of a refused scheduled advancement

    # Health monitoring
    HEALTH_CHECK_INTERVAL_SECONDS: float = 60.0
    HEALTH_CHECK_TIMEOUT_SECONDS: float = 10.0
    HEALTH_CHECK_URL: str = ""  # e.g. https://metrics.internal/launch/{feature}; empty disables polling
    ROLLBACK_HOOK_TIMEOUT_SECONDS: float = 30.0

    # Alerting
    ALERT_TIMEOUT_SECONDS: float = 10.0
    ALERT_BASE_URL: str = ""

    # Validator endpoint probes
    PROBE_BASE_URL: str = ""
    PROBE_TIMEOUT_SECONDS: float = 5.0

    # Flag store backend (memory|env|config)
    FEATURE_FLAG_BACKEND: str = "memory"
    FEATURE_FLAG_CONFIG_PATH: Optional[str] = None

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
    }


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings()
    return _settings_cache
