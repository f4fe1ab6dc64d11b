import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        debug: bool,
        gemini_api_key: Optional[str],
        gemini_model: str,
        ai_timeout_secs: float,
        update_adjusts_balance: bool,
        alert_repeat_hours: int,
        scheduler_enabled: bool,
        reconcile_autofix: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.debug = debug
        self.gemini_api_key = gemini_api_key
        self.gemini_model = gemini_model
        self.ai_timeout_secs = ai_timeout_secs
        self.update_adjusts_balance = update_adjusts_balance
        self.alert_repeat_hours = alert_repeat_hours
        self.scheduler_enabled = scheduler_enabled
        self.reconcile_autofix = reconcile_autofix


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINWISE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finwise.db"
    database_url = os.getenv("FINWISE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINWISE_TIMEZONE", "UTC")
    log_level = os.getenv("FINWISE_LOG_LEVEL", "INFO").upper()
    gemini_api_key = os.getenv("FINWISE_GEMINI_API_KEY") or None
    gemini_model = os.getenv("FINWISE_GEMINI_MODEL", "gemini-2.0-flash")
    ai_timeout_secs = float(os.getenv("FINWISE_AI_TIMEOUT_SECS", "10"))
    alert_repeat_hours = int(os.getenv("FINWISE_ALERT_REPEAT_HOURS", "24"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        debug=_env_flag("FINWISE_DEBUG", False),
        gemini_api_key=gemini_api_key,
        gemini_model=gemini_model,
        ai_timeout_secs=ai_timeout_secs,
        update_adjusts_balance=_env_flag("FINWISE_UPDATE_ADJUSTS_BALANCE", True),
        alert_repeat_hours=alert_repeat_hours,
        scheduler_enabled=_env_flag("FINWISE_SCHEDULER_ENABLED", True),
        reconcile_autofix=_env_flag("FINWISE_RECONCILE_AUTOFIX", False),
    )
