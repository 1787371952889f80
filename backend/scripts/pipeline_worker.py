#!/usr/bin/env python3
"""
Phone Pipeline Worker - runs the periodic fetch/transfer/title loops

Usage:
    python scripts/pipeline_worker.py
    python scripts/pipeline_worker.py --only fetch --only transfer

Environment:
    DATABASE_URL: Required - PostgreSQL connection string
    SCHEDULER_ENABLED / ENABLE_ARKA_FETCH_CRON / ENABLE_ARKA_TRANSFER_CRON /
    ENABLE_BUSINESS_TITLE_CRON: kill switches, read on every tick

Each loop is started regardless of its kill switch; a disabled component
just returns immediately on each tick, so switches can be flipped without
a restart.
"""

import argparse
import logging
import os
import signal
import sys

# Add backend to path for imports
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)

from app import create_app
from services.arka_phone_fetch import ArkaPhoneFetcher
from services.arka_phone_transfer import ArkaPhoneTransferService
from services.business_title_refresh import BusinessTitleRefresher
from services.pipeline_config import (
    get_bulk_transfer_interval,
    get_fetch_interval,
    get_title_interval,
    get_transfer_interval,
    log_pipeline_config,
)
from services.tick_runner import TickRunner, TickGuard

logger = logging.getLogger('pipeline_worker')

COMPONENTS = ('fetch', 'transfer', 'bulk-transfer', 'title')


def build_runner(app, components) -> TickRunner:
    runner = TickRunner(app=app)
    fetcher = ArkaPhoneFetcher()
    transfer = ArkaPhoneTransferService()
    titles = BusinessTitleRefresher()

    if 'fetch' in components:
        runner.add('arka-fetch', fetcher.run_tick, get_fetch_interval())
    if 'transfer' in components:
        runner.add('arka-transfer', _guarded(TickGuard('arka-transfer'), transfer.transfer_one), get_transfer_interval())
    if 'bulk-transfer' in components:
        runner.add(
            'arka-bulk-transfer',
            _guarded(TickGuard('arka-bulk-transfer'), transfer.transfer_missing_posts),
            get_bulk_transfer_interval(),
        )
    if 'title' in components:
        runner.add('business-title', _guarded(TickGuard('business-title'), titles.refresh_one), get_title_interval())
    return runner


def _guarded(guard: TickGuard, fn):
    def tick():
        if not guard.acquire():
            return None
        try:
            return fn()
        finally:
            guard.release()
    return tick


def main():
    parser = argparse.ArgumentParser(description='Run the phone pipeline loops')
    parser.add_argument('--only', action='append', choices=COMPONENTS,
                        help='Run only these loops (repeatable; default: all)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy').setLevel(logging.WARNING)

    app = create_app()
    log_pipeline_config()

    with app.app_context():
        runner = build_runner(app, args.only or COMPONENTS)

    def _shutdown(signum, frame):
        logger.info(f"Received signal {signum}; stopping loops")
        runner.stop_event.set()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    runner.start()
    logger.info(f"Started {len(runner.tasks)} loops")
    runner.stop_event.wait()
    runner.stop()
    logger.info("Pipeline worker stopped")


if __name__ == '__main__':
    main()
