import logging
import os
from dataclasses import dataclass
from functools import lru_cache

logger = logging.getLogger("config")


def get_data_dir() -> str:
    raw = os.environ.get("FLARE_DATA_DIR", "./flare_data")
    return os.path.abspath(raw)


def get_db_path() -> str:
    return os.path.join(get_data_dir(), "flare.sqlite3")


@dataclass(frozen=True)
class RuntimeConfig:
    refresh_interval_minutes: int
    fetch_max_concurrency: int
    request_timeout_s: int
    display_window_hours: int
    notify_window_minutes: int
    notify_group_throttle: int
    cleanup_retention_days: int
    tracking_retention_days: int
    page_delay_ms: int
    board_delay_ms: int
    max_results_cap: int
    ai_parsing_enabled: bool
    ai_retry_days: int
    scheduler_mode: str

    @property
    def display_window_s(self) -> float:
        return float(self.display_window_hours * 3600)

    @property
    def notify_window_s(self) -> float:
        return float(self.notify_window_minutes * 60)


def _parse_int_with_floor(
    env_name: str,
    *,
    default_value: int,
    minimum_floor: int,
) -> int:
    raw = os.getenv(env_name)
    if raw is None or not str(raw).strip():
        value = int(default_value)
    else:
        try:
            value = int(str(raw).strip())
        except ValueError:
            logger.warning(
                "[config] %s=%r is invalid. Using default %s.",
                env_name,
                raw,
                default_value,
            )
            value = int(default_value)

    if value < minimum_floor:
        logger.warning(
            "[config] %s=%s below minimum (%s). Using %s.",
            env_name,
            value,
            minimum_floor,
            minimum_floor,
        )
        value = minimum_floor

    return value


def _parse_bool(env_name: str, *, default_value: bool) -> bool:
    raw = os.getenv(env_name)
    if raw is None or not str(raw).strip():
        return bool(default_value)

    normalized = str(raw).strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False

    logger.warning(
        "[config] %s=%r is invalid boolean. Using default %s.",
        env_name,
        raw,
        default_value,
    )
    return bool(default_value)


def _parse_choice(env_name: str, *, choices: tuple, default_value: str) -> str:
    raw = (os.getenv(env_name) or "").strip().lower()
    if not raw:
        return default_value
    if raw not in choices:
        logger.warning(
            "[config] %s=%r not one of %s. Using default %s.",
            env_name,
            raw,
            ", ".join(choices),
            default_value,
        )
        return default_value
    return raw


def load_runtime_config() -> RuntimeConfig:
    """Read the environment without caching (tests build configs directly)."""
    return RuntimeConfig(
        refresh_interval_minutes=_parse_int_with_floor(
            "REFRESH_INTERVAL_MINUTES", default_value=30, minimum_floor=1
        ),
        fetch_max_concurrency=_parse_int_with_floor(
            "FETCH_MAX_CONCURRENCY", default_value=4, minimum_floor=1
        ),
        request_timeout_s=_parse_int_with_floor(
            "REQUEST_TIMEOUT_S", default_value=15, minimum_floor=1
        ),
        display_window_hours=_parse_int_with_floor(
            "DISPLAY_WINDOW_HOURS", default_value=48, minimum_floor=1
        ),
        notify_window_minutes=_parse_int_with_floor(
            "NOTIFY_WINDOW_MINUTES", default_value=120, minimum_floor=1
        ),
        notify_group_throttle=_parse_int_with_floor(
            "NOTIFY_GROUP_THROTTLE", default_value=10, minimum_floor=1
        ),
        cleanup_retention_days=_parse_int_with_floor(
            "CLEANUP_RETENTION_DAYS", default_value=7, minimum_floor=1
        ),
        tracking_retention_days=_parse_int_with_floor(
            "TRACKING_RETENTION_DAYS", default_value=30, minimum_floor=1
        ),
        page_delay_ms=_parse_int_with_floor("PAGE_DELAY_MS", default_value=300, minimum_floor=0),
        board_delay_ms=_parse_int_with_floor("BOARD_DELAY_MS", default_value=500, minimum_floor=0),
        max_results_cap=_parse_int_with_floor(
            "MAX_RESULTS_CAP", default_value=5000, minimum_floor=100
        ),
        ai_parsing_enabled=_parse_bool("AI_PARSING_ENABLED", default_value=False),
        ai_retry_days=_parse_int_with_floor("AI_RETRY_DAYS", default_value=7, minimum_floor=1),
        scheduler_mode=_parse_choice(
            "SCHEDULER_MODE", choices=("off", "once", "loop"), default_value="off"
        ),
    )


@lru_cache(maxsize=1)
def get_runtime_config() -> RuntimeConfig:
    cfg = load_runtime_config()

    logger.info(
        "[config] effective REFRESH_INTERVAL_MINUTES=%s FETCH_MAX_CONCURRENCY=%s REQUEST_TIMEOUT_S=%s "
        "DISPLAY_WINDOW_HOURS=%s NOTIFY_WINDOW_MINUTES=%s CLEANUP_RETENTION_DAYS=%s "
        "TRACKING_RETENTION_DAYS=%s AI_PARSING_ENABLED=%s SCHEDULER_MODE=%s",
        cfg.refresh_interval_minutes,
        cfg.fetch_max_concurrency,
        cfg.request_timeout_s,
        cfg.display_window_hours,
        cfg.notify_window_minutes,
        cfg.cleanup_retention_days,
        cfg.tracking_retention_days,
        cfg.ai_parsing_enabled,
        cfg.scheduler_mode,
    )
    return cfg
