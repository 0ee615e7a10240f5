import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from ledger.errors import ConfigurationError

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    seed_path: str = "data/seed.json"
    log_level: str = "INFO"
    currency_symbol: str = "Rp"
    default_reminder_days: int = 7
    low_stock_alerts: bool = True


def _flag(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean flag, got {raw!r}", setting=name)


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ
    defaults = Settings()

    level = env.get("LEDGER_LOG_LEVEL", defaults.log_level).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigurationError(f"Unknown log level {level!r}", setting="LEDGER_LOG_LEVEL")

    raw_days = env.get("LEDGER_DEFAULT_REMINDER_DAYS", str(defaults.default_reminder_days))
    try:
        reminder_days = int(raw_days)
    except ValueError:
        raise ConfigurationError(f"LEDGER_DEFAULT_REMINDER_DAYS must be an integer, got {raw_days!r}",
                                 setting="LEDGER_DEFAULT_REMINDER_DAYS")
    if reminder_days < 0:
        raise ConfigurationError("LEDGER_DEFAULT_REMINDER_DAYS cannot be negative", setting="LEDGER_DEFAULT_REMINDER_DAYS")

    return Settings(
        seed_path=env.get("LEDGER_SEED_PATH", defaults.seed_path),
        log_level=level,
        currency_symbol=env.get("LEDGER_CURRENCY_SYMBOL", defaults.currency_symbol),
        default_reminder_days=reminder_days,
        low_stock_alerts=_flag("LEDGER_LOW_STOCK_ALERTS", env.get("LEDGER_LOW_STOCK_ALERTS", "true")),
    )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    logging.getLogger("ledger").setLevel(settings.log_level)
