from __future__ import annotations

import asyncio

from splitledger.client import SplitLedgerClient
from splitledger.config import Settings, get_settings
from splitledger.db.repo import Database, PostgresBillStore
from splitledger.db.store import BillStore
from splitledger.logging import configure_logging, get_logger
from splitledger.scheduler import setup_scheduler
from splitledger.services.bills import BillCommandService
from splitledger.services.ledger import LedgerStore
from splitledger.services.session import SessionStore


def build_client(settings: Settings, store: BillStore) -> SplitLedgerClient:
    commands = BillCommandService(
        store,
        auto_dismiss_low_conflicts=settings.auto_dismiss_low_conflicts,
        delete_max_attempts=settings.delete_max_attempts,
    )
    ledger = LedgerStore(store, settings.user_id)
    sessions = SessionStore(settings.session_path, ttl=settings.session_ttl)
    return SplitLedgerClient(commands, ledger, sessions, default_currency=settings.default_currency)


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    db = Database(settings.database_url)
    await db.connect()
    client = build_client(settings, PostgresBillStore(db))

    scheduler = await setup_scheduler(settings, client.commands, client.sessions)

    log = get_logger(__name__)
    log.info("app.start", user_id=settings.user_id, session_recoverable=client.has_active_session())
    try:
        await client.ledger.run()
    finally:
        scheduler.shutdown(wait=False)
        await db.close()
        log.info("app.stop")


if __name__ == "__main__":
    asyncio.run(main())
