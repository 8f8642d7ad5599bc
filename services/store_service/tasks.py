"""Background maintenance tasks for the store service."""

from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.db.session import SessionFactory
from services.store_service.services.compensator import expire_stale_orders

logger = get_logger(__name__)


async def expire_stale_reservations(session_factory: SessionFactory = None) -> int:
    """Cancel pending orders whose reservation outlived its TTL."""
    if session_factory is None:
        from libs.db.config import AsyncSessionLocal

        session_factory = AsyncSessionLocal

    ttl = get_settings().RESERVATION_TTL_MINUTES
    expired = await expire_stale_orders(session_factory, older_than=ttl)
    if expired:
        logger.info(
            "Released reservations of %d expired orders",
            len(expired),
            extra={"extra_fields": {"order_numbers": expired}},
        )
    return len(expired)
