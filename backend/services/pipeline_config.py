"""
Phone Pipeline Configuration - Environment-based settings and kill switches

Environment Variables:
    SCHEDULER_ENABLED: 'true' or 'false' (default: 'true')
        Master switch. When off, every periodic tick exits early.

    ENABLE_ARKA_FETCH_CRON: default 'true'
    ENABLE_ARKA_TRANSFER_CRON: default 'false'
    ENABLE_BUSINESS_TITLE_CRON: default 'false'
        Per-component kill switches. A forced call (CLI, backfill)
        ignores them.

    ARKA_START_FETCH_ID: int (default: 10000)
        Cursor floor; a cursor below it is reset up to it.

    ARKA_FETCH_BATCH: int (default: 10)
        Max single steps per fetch tick.

    ARKA_FETCH_INTERVAL_SECONDS / ARKA_TRANSFER_INTERVAL_SECONDS /
    ARKA_BULK_TRANSFER_INTERVAL_SECONDS / BUSINESS_TITLE_INTERVAL_SECONDS:
        Tick periods for the worker process.

    ARKA_API_BASE_URL / DIVAR_API_BASE_URL:
        Upstream base URLs.
"""

import os
import logging
from datetime import timedelta

logger = logging.getLogger(__name__)


# =============================================================================
# Fixed timings
# =============================================================================

# Fetcher
FETCH_LOCK_SECONDS = 0.2
FETCH_LOCKED_BY = 'arka-fetch'
RATE_LIMIT_BACKOFF = timedelta(seconds=10)
ERROR_BACKOFF = timedelta(seconds=15)
FETCH_TIMEOUT_SECONDS = 10

# Transfer
TRANSFER_LOCK = timedelta(seconds=60)
TRANSFER_DEFER = timedelta(minutes=10)
TRANSFER_WINDOW = timedelta(hours=4)

# Lease
LEASE_DURATION = timedelta(seconds=60)
MAX_PHONE_FETCH_ATTEMPTS = 5

# Title sweep
TITLE_LOCK = timedelta(seconds=60)

# Tick runner
TICK_WATCHDOG_SECONDS = 120


# =============================================================================
# Kill Switches
# =============================================================================

_FALSE_VALUES = ('false', '0', 'no', 'off', 'disabled')


def _env_flag(name: str, default: str) -> bool:
    value = os.environ.get(name, default).strip().lower()
    return value not in _FALSE_VALUES


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid {name} '{raw}', defaulting to {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Invalid {name} '{raw}', defaulting to {default}")
        return default
    if value <= 0:
        logger.warning(f"Non-positive {name} '{raw}', defaulting to {default}")
        return default
    return value


def is_scheduler_enabled() -> bool:
    """
    Master switch for every periodic tick.

    Environment:
        SCHEDULER_ENABLED: 'true' (default) or 'false'
    """
    return _env_flag('SCHEDULER_ENABLED', 'true')


def is_fetch_enabled() -> bool:
    return is_scheduler_enabled() and _env_flag('ENABLE_ARKA_FETCH_CRON', 'true')


def is_transfer_enabled() -> bool:
    return is_scheduler_enabled() and _env_flag('ENABLE_ARKA_TRANSFER_CRON', 'false')


def is_title_refresh_enabled() -> bool:
    return is_scheduler_enabled() and _env_flag('ENABLE_BUSINESS_TITLE_CRON', 'false')


# =============================================================================
# Tunables
# =============================================================================

def get_start_fetch_id() -> int:
    """
    Cursor floor.

    Environment:
        ARKA_START_FETCH_ID: default 10000
    """
    return _env_int('ARKA_START_FETCH_ID', 10000)


def get_fetch_batch() -> int:
    batch = _env_int('ARKA_FETCH_BATCH', 10)
    if batch < 1:
        logger.warning(f"ARKA_FETCH_BATCH must be >= 1, got {batch}; using 1")
        return 1
    return batch


def get_fetch_interval() -> float:
    return _env_float('ARKA_FETCH_INTERVAL_SECONDS', 5.0)


def get_transfer_interval() -> float:
    return _env_float('ARKA_TRANSFER_INTERVAL_SECONDS', 5.0)


def get_bulk_transfer_interval() -> float:
    return _env_float('ARKA_BULK_TRANSFER_INTERVAL_SECONDS', 60.0)


def get_title_interval() -> float:
    return _env_float('BUSINESS_TITLE_INTERVAL_SECONDS', 1.0)


def get_arka_base_url() -> str:
    return os.environ.get('ARKA_API_BASE_URL', 'https://back.arkafile.info').rstrip('/')


def get_divar_base_url() -> str:
    return os.environ.get('DIVAR_API_BASE_URL', 'https://api.divar.ir').rstrip('/')


def log_pipeline_config():
    """Log current pipeline configuration."""
    logger.info("=" * 60)
    logger.info("Phone Pipeline Configuration")
    logger.info("=" * 60)
    logger.info(f"  Scheduler:        {is_scheduler_enabled()}")
    logger.info(f"  Fetch:            {is_fetch_enabled()} (every {get_fetch_interval()}s, batch {get_fetch_batch()})")
    logger.info(f"  Transfer:         {is_transfer_enabled()} (every {get_transfer_interval()}s, bulk {get_bulk_transfer_interval()}s)")
    logger.info(f"  Title refresh:    {is_title_refresh_enabled()} (every {get_title_interval()}s)")
    logger.info(f"  Start fetch id:   {get_start_fetch_id()}")
    logger.info(f"  Catalog API:      {get_arka_base_url()}")
    logger.info(f"  Brand API:        {get_divar_base_url()}")
    logger.info("=" * 60)
