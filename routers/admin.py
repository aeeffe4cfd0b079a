"""
Admin endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException
from pymongo.database import Database

from database import get_db
from logging_config import get_logger
from mailer import Mailer, get_mailer
from routers.products import get_product_or_404
from security import require_roles
from stock_alerts import is_low_stock, send_stock_alert

router = APIRouter(prefix="/api/admin", tags=["Admin"], dependencies=[Depends(require_roles("admin"))])
logger = get_logger("shopsmart.admin")


@router.post("/stock-checkup/{product_id}")
def stock_checkup(product_id: str, db: Database = Depends(get_db), mailer: Mailer = Depends(get_mailer)):
    product = get_product_or_404(db, product_id)
    if not is_low_stock(product):
        return {"message": "Stock level is sufficient", "stock": product.get("stock", 0)}

    try:
        send_stock_alert(mailer, product)
    except Exception:
        logger.exception("Stock alert mail failed", product_id=product_id)
        raise HTTPException(status_code=500, detail="Something went wrong")
    return {"message": "Low stock alert sent", "stock": product.get("stock", 0)}
