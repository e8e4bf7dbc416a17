"""Runtime configuration read from environment variables."""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from processor.errors import ConfigError

REQUIRED_KEYS = (
    'C2G_CYBOZU_USERID',
    'C2G_CYBOZU_USERPW',
    'C2G_CYBOZU_BASE_URL',
    'C2G_CALENDAR_ID',
)

DEFAULT_CONFIG_DIR = Path.home() / '.config' / 'cybozu8-2-googlecalendar'


@dataclass(frozen=True)
class Config:
    """Settings for one sync run."""
    user_id: str
    password: str
    base_url: str
    calendar_id: str
    timezone: str = 'Asia/Tokyo'
    encoding: str = 'cp932'
    timeout_seconds: int = 30
    rate_limit_delay: int = 10
    max_workers: int = 8
    lookback_days: int = 0
    months_ahead: int = 1
    config_dir: Path = DEFAULT_CONFIG_DIR
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'Config':
        """
        Read configuration from the environment.

        Args:
            env: Mapping to read instead of os.environ

        Returns:
            Config instance

        Raises:
            ConfigError: If a required variable is unset or a value is invalid
        """
        env = os.environ if env is None else env

        missing = [key for key in REQUIRED_KEYS if not env.get(key)]
        if missing:
            raise ConfigError(f"Environment variable not set: {', '.join(missing)}")

        timezone = env.get('C2G_TIMEZONE', 'Asia/Tokyo')
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigError(f"Unknown time zone: {timezone}") from e

        config_dir = env.get('C2G_CONFIG_DIR')

        return cls(
            user_id=env['C2G_CYBOZU_USERID'],
            password=env['C2G_CYBOZU_USERPW'],
            base_url=env['C2G_CYBOZU_BASE_URL'],
            calendar_id=env['C2G_CALENDAR_ID'],
            timezone=timezone,
            encoding=env.get('C2G_ENCODING', 'cp932'),
            timeout_seconds=_int_setting(env, 'C2G_TIMEOUT_SECONDS', 30, minimum=1),
            rate_limit_delay=_int_setting(env, 'C2G_RATE_LIMIT_DELAY', 10, minimum=0),
            max_workers=_int_setting(env, 'C2G_MAX_WORKERS', 8, minimum=1),
            lookback_days=_int_setting(env, 'C2G_LOOKBACK_DAYS', 0, minimum=0),
            months_ahead=_int_setting(env, 'C2G_MONTHS_AHEAD', 1, minimum=1),
            config_dir=Path(config_dir).expanduser() if config_dir else DEFAULT_CONFIG_DIR,
            log_level=env.get('LOG_LEVEL', 'INFO'),
        )


def _int_setting(env: Mapping[str, str], key: str, default: int, minimum: int) -> int:
    raw = env.get(key)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigError(f"{key} must be at least {minimum}, got {value}")
    return value
