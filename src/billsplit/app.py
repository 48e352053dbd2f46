from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from billsplit.config import Settings, get_settings
from billsplit.db.repo import BillRepository, Database
from billsplit.logging import configure_logging, get_logger
from billsplit.services.bills import BillService


@asynccontextmanager
async def open_service(settings: Optional[Settings] = None) -> AsyncIterator[BillService]:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    log = get_logger(__name__)

    db = Database(settings.database_url)
    await db.connect()
    repo = BillRepository(db, lock_timeout_ms=settings.lock_timeout_ms)

    log.info("billsplit.start", lock_timeout_ms=settings.lock_timeout_ms)
    try:
        yield BillService(repo, max_amount_cents=settings.max_amount_cents)
    finally:
        await db.close()
        log.info("billsplit.stop")
