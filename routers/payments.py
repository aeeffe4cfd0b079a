"""
Online payment for orders placed with payment_mode "online".
"""
from typing import Any, Dict, Tuple

from fastapi import APIRouter, Depends, HTTPException
from pymongo.database import Database

from database import get_db, to_jsonable
from logging_config import get_logger
from payment_gateway import PaymentGateway, PaymentGatewayError, get_payment_gateway
from routers.users import get_user_or_404
from schemas import PaymentOrderRequest, PaymentVerifyRequest
from security import TokenUser, require_roles

router = APIRouter(prefix="/api/payments", tags=["Payments"])
logger = get_logger("shopsmart.payments")


def find_order(db: Database, user_id: str, order_id: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    doc = get_user_or_404(db, user_id)
    order = next((o for o in doc.get("order_history", []) if o.get("order_id") == order_id), None)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return doc, order


@router.post("/orders")
def create_payment_order(
    payload: PaymentOrderRequest,
    user: TokenUser = Depends(require_roles("user", "admin")),
    db: Database = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    doc, order = find_order(db, user.id, payload.order_id)
    if order.get("payment_mode") != "online":
        raise HTTPException(status_code=400, detail="Order is cash on delivery")
    if order.get("payment_status"):
        raise HTTPException(status_code=400, detail="Order is already paid")
    if order.get("order_status") != "pending":
        raise HTTPException(status_code=400, detail="Only pending orders can be paid")

    try:
        gateway_order = gateway.create_order(
            amount=float(order["total_amount"]),
            receipt=payload.order_id,
            notes={"user_id": user.id, "product_id": str(order.get("product_id"))},
        )
    except PaymentGatewayError:
        raise HTTPException(status_code=502, detail="Payment gateway unavailable")

    db["user"].update_one(
        {"_id": doc["_id"], "order_history.order_id": payload.order_id},
        {"$set": {"order_history.$.gateway_order_id": gateway_order["id"]}},
    )
    return {"message": "Payment order created", "key_id": gateway.key_id, "gateway_order": gateway_order}


@router.post("/verify")
def verify_payment(
    payload: PaymentVerifyRequest,
    user: TokenUser = Depends(require_roles("user", "admin")),
    db: Database = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    doc, order = find_order(db, user.id, payload.order_id)
    if order.get("gateway_order_id") != payload.gateway_order_id:
        raise HTTPException(status_code=400, detail="Payment does not belong to this order")
    if not gateway.verify_signature(payload.gateway_order_id, payload.payment_id, payload.signature):
        logger.warning("Payment signature mismatch", order_id=payload.order_id)
        raise HTTPException(status_code=400, detail="Invalid payment signature")
    if order.get("order_status") != "pending" or order.get("payment_status"):
        raise HTTPException(status_code=400, detail="Only pending orders can be paid")

    # Matches only while the order is still pending and unpaid, so a cancel
    # that lands first keeps the order cancelled
    result = db["user"].update_one(
        {
            "_id": doc["_id"],
            "order_history": {"$elemMatch": {
                "order_id": payload.order_id,
                "order_status": "pending",
                "payment_status": False,
            }},
        },
        {"$set": {
            "order_history.$.payment_status": True,
            "order_history.$.payment_id": payload.payment_id,
            "order_history.$.order_status": "processing",
        }},
    )
    if result.modified_count == 0:
        raise HTTPException(status_code=400, detail="Only pending orders can be paid")
    logger.info("Payment verified", order_id=payload.order_id, payment_id=payload.payment_id)
    _, order = find_order(db, user.id, payload.order_id)
    return {"message": "Payment successful", "order": to_jsonable(order)}
