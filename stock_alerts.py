"""
Low stock alerts: the manual per-product check and the daily digest job.
"""
import asyncio
from datetime import datetime, timedelta
from html import escape
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from logging_config import get_logger
from mailer import Mailer
from settings import settings

logger = get_logger("shopsmart.stock")


def is_low_stock(product: Dict[str, Any], threshold: Optional[int] = None) -> bool:
    if threshold is None:
        threshold = settings.LOW_STOCK_THRESHOLD
    return int(product.get("stock", 0)) <= threshold


def find_low_stock(database: Database, threshold: Optional[int] = None) -> List[Dict[str, Any]]:
    if threshold is None:
        threshold = settings.LOW_STOCK_THRESHOLD
    return list(database["product"].find({"stock": {"$lte": threshold}}).sort("stock", 1))


def send_stock_alert(mailer: Mailer, product: Dict[str, Any]) -> None:
    mailer.send(
        to=mailer.admin_address,
        subject="Stock low alert",
        html=(
            f"<p>Dear admin, product with ID {product['_id']} has low stock "
            f"({product.get('stock', 0)}). Please restock it.</p>"
        ),
    )


def send_low_stock_digest(database: Database, mailer: Mailer) -> int:
    """Email the admin every low stock product. Returns how many were listed."""
    products = find_low_stock(database)
    if not products:
        logger.info("All products have sufficient stock")
        return 0

    items = "".join(
        f"<li>{escape(str(p.get('name', '')))} (ID: {p['_id']}) - Stock: {p.get('stock', 0)}</li>"
        for p in products
    )
    mailer.send(
        to=mailer.admin_address,
        subject="Daily Low Stock Alert",
        html=f"<p>Dear admin, the following products have low stock:</p><ul>{items}</ul>",
    )
    logger.info("Low stock digest sent", count=len(products))
    return len(products)


def seconds_until(hour: int, now: Optional[datetime] = None) -> float:
    """Seconds from ``now`` until the next occurrence of ``hour``:00 local time."""
    now = now or datetime.now()
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def run_daily_digest(database: Database, mailer: Mailer, hour: int) -> None:
    """Send the digest every day at ``hour``. Runs until cancelled."""
    while True:
        await asyncio.sleep(seconds_until(hour))
        try:
            await asyncio.to_thread(send_low_stock_digest, database, mailer)
        except Exception:
            logger.exception("Low stock digest failed")
