#!/usr/bin/env python3
"""
Email applicants whose saved drafts have been idle for a while.

Meant to run from a scheduler (cron, Cloud Scheduler job) when the HTTP
endpoint ``POST /api/v1/internal/reminders/run`` is not reachable.

Usage:
    python scripts/send_reminders.py
"""

from __future__ import annotations

import asyncio
import logging

from app.core.logging import configure_logging
from app.db.session import AsyncSessionLocal, engine
from app.services.notifications import EmailNotifier
from app.services.reminders import send_stale_draft_reminders

logger = logging.getLogger("scripts.send_reminders")


async def main() -> int:
    configure_logging()
    try:
        async with AsyncSessionLocal() as session:
            run = await send_stale_draft_reminders(session, EmailNotifier())
    finally:
        await engine.dispose()
    logger.info("Reminder run finished: %s sent, %s failed", run.sent, run.failed)
    return 0 if run.failed == 0 else 1


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
