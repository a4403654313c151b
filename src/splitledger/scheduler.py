from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from splitledger.config import Settings
from splitledger.logging import get_logger
from splitledger.services.bills import BillCommandService
from splitledger.services.session import SessionStore


async def setup_scheduler(settings: Settings, service: BillCommandService, sessions: SessionStore) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone=settings.tz)
    scheduler.add_job(
        _session_sweep_job,
        IntervalTrigger(minutes=settings.sweep_interval_minutes),
        kwargs={"sessions": sessions},
        id="session-sweep",
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_job(
        _conflict_sweep_job,
        IntervalTrigger(seconds=max(settings.conflict_auto_dismiss_seconds, 1)),
        kwargs={"service": service, "settings": settings},
        id="low-conflict-sweep",
        coalesce=True,
        max_instances=1,
    )
    scheduler.start()
    return scheduler


def _session_sweep_job(sessions: SessionStore) -> None:
    # Runs in the scheduler's thread pool; load() clears anything that can no longer be resumed.
    log = get_logger(__name__)
    snapshot = sessions.load()
    log.info("session.sweep", active=snapshot is not None)


async def _conflict_sweep_job(service: BillCommandService, settings: Settings) -> None:
    log = get_logger(__name__)
    committed = await service.expire_low_conflicts(settings.conflict_auto_dismiss_after)
    if committed:
        log.info("conflict.sweep", dismissed=[bill.id for bill in committed])
