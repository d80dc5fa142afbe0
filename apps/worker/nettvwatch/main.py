"""
nettvwatch entry point.

Runs the portal workflow once and mails the report, or, when
NETTV_SCHEDULE_HOURS is set, starts APScheduler and runs it at those hours.

Usage: python -m nettvwatch.main [ENV_FILE]
"""

import asyncio
import logging
import sys
from datetime import datetime
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from nettvwatch.config import load_settings, settings
from nettvwatch.exceptions import PortalError
from nettvwatch.notifier import send_mail
from nettvwatch.portal_client import run_workflow
from nettvwatch.report import format_failure, format_report
from nettvwatch.transport import PortalSession

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("nettvwatch")


def _now() -> datetime:
    return datetime.now(ZoneInfo(settings.timezone))


def _build_session() -> PortalSession:
    return PortalSession(
        user_agent=settings.user_agent or None,
        timeout=settings.request_timeout_seconds,
        proxy=settings.socks_proxy or None,
        default_encoding=settings.portal_encoding,
    )


async def run_once() -> int:
    """One full run. Returns the process exit code (0 ok, 1 failed)."""
    session = None
    try:
        session = _build_session()
        result = await run_workflow(session, settings)
    except PortalError as e:
        logger.error("Run failed at step %s: %s", e.step or "unknown", e)
        title, body = format_failure(e, _now())
        await send_mail(title, body)
        return 1
    except Exception as e:
        logger.critical("Run crashed with unexpected error", exc_info=True)
        title, body = format_failure(e, _now())
        await send_mail(title, body)
        return 1
    finally:
        if session is not None:
            await session.close()

    title, body = format_report(result, _now())
    logger.info("%s\n%s", title, body)
    await send_mail(title, body)
    return 0


def setup_scheduler() -> AsyncIOScheduler:
    """Scheduler running run_once at NETTV_SCHEDULE_HOURS, one run at a time."""
    scheduler = AsyncIOScheduler(timezone=settings.timezone)
    scheduler.add_job(
        run_once,
        CronTrigger(hour=settings.schedule_hours, timezone=settings.timezone),
        id="portal_run",
        max_instances=1,
        coalesce=True,
    )
    return scheduler


async def run() -> int:
    if not settings.schedule_hours:
        return await run_once()

    logger.info("nettvwatch scheduler starting (hours=%s)...", settings.schedule_hours)
    scheduler = setup_scheduler()
    scheduler.start()
    try:
        while True:
            await asyncio.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        logger.info("nettvwatch received shutdown signal.")
    except Exception:
        logger.critical("nettvwatch scheduler crashed with unexpected error", exc_info=True)
    finally:
        scheduler.shutdown()
        logger.info("nettvwatch stopped.")
    return 0


def main(argv: list[str] | None = None) -> None:
    args = sys.argv[1:] if argv is None else argv
    if args:
        load_settings(args[0])
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
