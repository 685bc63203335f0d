from apscheduler.schedulers.asyncio import AsyncIOScheduler


def start_cleaner(registry, metrics, logger, max_idle_seconds: float):
    scheduler = AsyncIOScheduler()

    async def _job():
        try:
            reaped = registry.reap_idle(max_idle_seconds)
            if reaped:
                metrics.record_sessions_reaped(reaped)
                logger.info("event=sessions_reaped count=%s", reaped)
        except Exception as e:
            logger.error("event=cleaner_unexpected_error error=%s", str(e))

    scheduler.add_job(_job, "interval", minutes=1)
    scheduler.start()
    return scheduler
