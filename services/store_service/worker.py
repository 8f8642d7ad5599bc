"""ARQ worker for store maintenance jobs."""

from arq import cron
from arq.connections import RedisSettings
from dotenv import load_dotenv

load_dotenv()

from libs.common.config import get_settings
from libs.common.logging import configure_logging, get_logger

logger = get_logger(__name__)


async def startup(ctx: dict):
    configure_logging()
    logger.info("Store worker started")


async def task_expire_stale_reservations(ctx: dict):
    from services.store_service.tasks import expire_stale_reservations

    logger.info("Running: expire_stale_reservations")
    return await expire_stale_reservations()


class WorkerSettings:
    redis_settings = RedisSettings.from_dsn(get_settings().REDIS_URL)
    on_startup = startup

    functions = [task_expire_stale_reservations]

    cron_jobs = [
        cron(
            task_expire_stale_reservations,
            minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55},
            run_at_startup=True,
        ),
    ]
