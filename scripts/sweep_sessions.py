#!/usr/bin/env python3
"""Expire overdue negotiation sessions and print yesterday's outcome totals.

Meant to run from cron against the shared Redis store
(STORAGE_BACKEND=redis); against the in-memory backend it only sees its own
empty process.
"""

import asyncio
import os
import sys
from datetime import timedelta

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from haggle.analytics import summarize
from haggle.db import close_store, init_store


async def sweep_sessions():
    try:
        engine = await init_store()
    except Exception as e:
        print(f'Error: {e}')
        sys.exit(1)

    try:
        expired = await engine.sweep()
        print(f'Expired {expired} overdue sessions')

        yesterday = engine.clock.now().date() - timedelta(days=1)
        totals = summarize(await engine.analytics.outcomes(yesterday, yesterday))
        print(
            f'{yesterday.isoformat()}: {totals.total_negotiations} negotiations, '
            f'{totals.accepted_count} accepted, '
            f'conversion {totals.conversion_rate:.1f}%, '
            f'revenue {totals.total_revenue:.2f}'
        )
    finally:
        await close_store()

if __name__ == '__main__':
    asyncio.run(sweep_sessions())
