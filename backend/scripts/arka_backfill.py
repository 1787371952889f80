#!/usr/bin/env python3
"""
Arka Backfill - catch the fetch cursor up to the catalog's latest id

Usage:
    python scripts/arka_backfill.py
    python scripts/arka_backfill.py --start-id 19015 --max-id 25000 --concurrency 5

Exit Codes:
    0: Cursor reached max id
    1: Latest id could not be determined
"""

import argparse
import logging
import os
import sys

# Add backend to path for imports
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)

from app import create_app
from services.arka_phone_fetch import ArkaPhoneFetcher

logger = logging.getLogger('arka_backfill')


def main():
    parser = argparse.ArgumentParser(description='Backfill Arka phone records up to the latest id')
    parser.add_argument('--start-id', type=int, default=None, help='Raise the cursor to at least this id')
    parser.add_argument('--max-id', type=int, default=None, help='Stop at this id (default: latest id)')
    parser.add_argument('--concurrency', type=int, default=10, help='Forced steps per round (default: 10)')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )
    logging.getLogger('urllib3').setLevel(logging.WARNING)

    app = create_app()
    with app.app_context():
        summary = ArkaPhoneFetcher().run_backfill(
            start_id=args.start_id,
            max_id=args.max_id,
            concurrency=max(1, args.concurrency),
        )

    if summary.get('aborted'):
        logger.error(f"Backfill aborted: {summary['aborted']}")
        sys.exit(1)
    logger.info(
        f"Backfill complete: stored={summary['stored']} not_found={summary['not_found']} "
        f"next={summary['next_fetch_id']} max={summary['max_id']}"
    )


if __name__ == '__main__':
    main()
