# storefront/tasks/expire.py
from datetime import datetime, timezone, timedelta

from storefront.celery_worker import celery_app
from storefront.data.database import SessionLocal
from storefront.repos.cart_repo import CartRepo
from storefront.utils.settings import GUEST_CART_TTL_SECONDS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def purge_guest_carts(db, now: datetime | None = None) -> int:
    """Delete guest carts nobody touched within the TTL. Returns how many."""
    now = now or datetime.now(timezone.utc)
    repo = CartRepo(db)

    carts = repo.get_stale_guest_carts(now - timedelta(seconds=GUEST_CART_TTL_SECONDS))
    logger.info(f"Found {len(carts)} stale guest carts")

    for cart in carts:
        repo.delete_cart(cart)
    repo.commit()

    return len(carts)


@celery_app.task(name="storefront.tasks.expire.purge_guest_carts_task")
def purge_guest_carts_task():
    logger.info("Purge guest carts task started")

    db = SessionLocal()
    try:
        return purge_guest_carts(db)
    finally:
        db.close()
