"""
Endpoints for the signed-in shopper: orders, profile, addresses, cart,
wishlist and product reviews.
"""
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from pymongo import ReturnDocument
from pymongo.database import Database

from cache import ProductCache, get_cache
from database import get_db, parse_object_id, to_jsonable, to_str_id, utcnow
from logging_config import get_logger
from routers.products import get_product_or_404
from schemas import Address, CartItem, OrderItem, PlaceOrderRequest, Review, ReviewRequest, WishlistItem
from security import TokenUser, get_current_user, require_roles
from storage import ImageStorage, get_storage

router = APIRouter(prefix="/api/me", tags=["Account"])
logger = get_logger("shopsmart.users")

shopper = require_roles("user", "admin")

CANCELLABLE = ("pending", "processing")


def get_user_or_404(db: Database, user_id: str) -> Dict[str, Any]:
    oid = parse_object_id(user_id)
    doc = db["user"].find_one({"_id": oid}) if oid else None
    if not doc:
        raise HTTPException(status_code=404, detail="User not found")
    return doc


def populate_products(db: Database, lines: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Attach the referenced product to each cart or wishlist line."""
    ids = [oid for oid in (parse_object_id(line.get("product_id")) for line in lines) if oid]
    products = {str(p["_id"]): to_str_id(p) for p in db["product"].find({"_id": {"$in": ids}})} if ids else {}
    result = []
    for line in lines:
        item = to_jsonable(line)
        item["product"] = products.get(line.get("product_id"))
        result.append(item)
    return result


# Orders

@router.get("/orders")
def order_history(user: TokenUser = Depends(shopper), db: Database = Depends(get_db)):
    doc = get_user_or_404(db, user.id)
    return {"message": "Order history fetch success", "order_history": to_jsonable(doc.get("order_history", []))}


@router.post("/orders/{product_id}", status_code=status.HTTP_201_CREATED)
def place_order(
    product_id: str,
    payload: PlaceOrderRequest,
    user: TokenUser = Depends(shopper),
    db: Database = Depends(get_db),
    cache: ProductCache = Depends(get_cache),
):
    product = get_product_or_404(db, product_id)
    user_oid = parse_object_id(user.id)

    # Conditional decrement so concurrent orders cannot oversell
    reserved = db["product"].find_one_and_update(
        {"_id": product["_id"], "stock": {"$gte": payload.quantity}},
        {"$inc": {"stock": -payload.quantity}},
        return_document=ReturnDocument.AFTER,
    )
    if not reserved:
        raise HTTPException(status_code=400, detail="Insufficient stock")

    try:
        order = OrderItem(
            order_id=uuid.uuid4().hex,
            product_id=product_id,
            quantity=payload.quantity,
            payment_mode=payload.payment_mode,
            total_amount=round(float(product["price"]) * payload.quantity, 2),
            shipping_address=payload.shipping_address,
        )
        result = db["user"].update_one({"_id": user_oid}, {"$push": {"order_history": order.model_dump()}})
        if result.matched_count == 0:
            db["product"].update_one({"_id": product["_id"]}, {"$inc": {"stock": payload.quantity}})
            raise HTTPException(status_code=404, detail="User not found")
        cache.invalidate_product(product_id)
        logger.info("Order placed", order_id=order.order_id, user_id=user.id, product_id=product_id)
        return {"message": "Order success", "order": to_jsonable(order.model_dump())}
    except HTTPException:
        raise
    except Exception:
        db["product"].update_one({"_id": product["_id"]}, {"$inc": {"stock": payload.quantity}})
        logger.exception("Placing order failed", product_id=product_id)
        raise HTTPException(status_code=500, detail="Something went wrong while ordering a product")


@router.patch("/orders/{order_id}/cancel")
def cancel_order(
    order_id: str,
    user: TokenUser = Depends(shopper),
    db: Database = Depends(get_db),
    cache: ProductCache = Depends(get_cache),
):
    doc = get_user_or_404(db, user.id)
    order = next((o for o in doc.get("order_history", []) if o.get("order_id") == order_id), None)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order.get("order_status") not in CANCELLABLE:
        raise HTTPException(status_code=400, detail=f"Order cannot be cancelled once {order.get('order_status')}")

    try:
        # Only one cancel can flip the status, and only that one restocks
        result = db["user"].update_one(
            {
                "_id": doc["_id"],
                "order_history": {"$elemMatch": {"order_id": order_id, "order_status": {"$in": list(CANCELLABLE)}}},
            },
            {"$set": {"order_history.$.order_status": "cancelled"}},
        )
        if result.modified_count != 1:
            raise HTTPException(status_code=400, detail="Order is no longer cancellable")
        product_oid = parse_object_id(order.get("product_id"))
        if product_oid:
            db["product"].update_one({"_id": product_oid}, {"$inc": {"stock": int(order.get("quantity", 1))}})
            cache.invalidate_product(order["product_id"])
        return {"message": "Order cancelled", "order_id": order_id}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Cancelling order failed", order_id=order_id)
        raise HTTPException(status_code=500, detail="Something went wrong while cancelling the order")


# Profile and addresses

@router.patch("/profile")
def update_profile(
    name: Optional[str] = Form(None),
    profile_photo: Optional[UploadFile] = File(None),
    user: TokenUser = Depends(get_current_user),
    db: Database = Depends(get_db),
    cache: ProductCache = Depends(get_cache),
    storage: ImageStorage = Depends(get_storage),
):
    doc = get_user_or_404(db, user.id)
    changes: Dict[str, Any] = {"updated_at": utcnow()}
    if name:
        changes["name"] = name
    try:
        if profile_photo and profile_photo.filename:
            changes["profile_photo"] = storage.save(profile_photo, "profiles")
        db["user"].update_one({"_id": doc["_id"]}, {"$set": changes})
        cache.invalidate_user(user.id)
        return {"message": "User updated successfully"}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Profile update failed", user_id=user.id)
        raise HTTPException(status_code=500, detail="Something went wrong while editing user profile")


@router.get("/addresses")
def list_addresses(user: TokenUser = Depends(shopper), db: Database = Depends(get_db)):
    doc = get_user_or_404(db, user.id)
    return {"addresses": doc.get("addresses", [])}


@router.post("/addresses", status_code=status.HTTP_201_CREATED)
def add_address(address: Address, user: TokenUser = Depends(shopper), db: Database = Depends(get_db)):
    doc = get_user_or_404(db, user.id)
    addresses = doc.get("addresses", [])
    if address.is_default:
        for existing in addresses:
            existing["is_default"] = False
    addresses.append(address.model_dump())
    db["user"].update_one({"_id": doc["_id"]}, {"$set": {"addresses": addresses}})
    return {"message": "Address added", "addresses": addresses}


# Cart

@router.put("/cart/{product_id}")
def add_to_cart(
    product_id: str,
    user: TokenUser = Depends(shopper),
    db: Database = Depends(get_db),
):
    get_product_or_404(db, product_id)
    doc = get_user_or_404(db, user.id)
    try:
        updated = db["user"].find_one_and_update(
            {"_id": doc["_id"], "cart.product_id": product_id},
            {"$inc": {"cart.$.quantity": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            updated = db["user"].find_one_and_update(
                {"_id": doc["_id"], "cart.product_id": {"$ne": product_id}},
                {"$push": {"cart": CartItem(product_id=product_id).model_dump()}},
                return_document=ReturnDocument.AFTER,
            )
        if not updated:
            # Another request pushed the line in between
            updated = db["user"].find_one_and_update(
                {"_id": doc["_id"], "cart.product_id": product_id},
                {"$inc": {"cart.$.quantity": 1}},
                return_document=ReturnDocument.AFTER,
            )
        if not updated:
            raise HTTPException(status_code=404, detail="User not found")
        return {"message": "Product added to cart", "cart": populate_products(db, updated.get("cart", []))}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Add to cart failed", product_id=product_id)
        raise HTTPException(status_code=500, detail="Something went wrong while adding product to the cart")


@router.get("/cart")
def show_cart(user: TokenUser = Depends(shopper), db: Database = Depends(get_db)):
    doc = get_user_or_404(db, user.id)
    return {"message": "Fetched cart successfully", "cart": populate_products(db, doc.get("cart", []))}


@router.delete("/cart/{product_id}")
def remove_from_cart(product_id: str, user: TokenUser = Depends(shopper), db: Database = Depends(get_db)):
    doc = get_user_or_404(db, user.id)
    updated = db["user"].find_one_and_update(
        {"_id": doc["_id"]},
        {"$pull": {"cart": {"product_id": product_id}}},
        return_document=ReturnDocument.AFTER,
    )
    return {"message": "Product removed from cart", "cart": populate_products(db, updated.get("cart", []))}


# Wishlist

@router.put("/wishlist/{product_id}")
def add_to_wishlist(product_id: str, user: TokenUser = Depends(shopper), db: Database = Depends(get_db)):
    get_product_or_404(db, product_id)
    doc = get_user_or_404(db, user.id)
    wishlist = doc.get("wishlist", [])
    if not any(item["product_id"] == product_id for item in wishlist):
        wishlist.append(WishlistItem(product_id=product_id).model_dump())
        db["user"].update_one({"_id": doc["_id"]}, {"$set": {"wishlist": wishlist}})
    return {"message": "Added to the wishlist", "wishlist": populate_products(db, wishlist)}


@router.get("/wishlist")
def show_wishlist(user: TokenUser = Depends(shopper), db: Database = Depends(get_db)):
    doc = get_user_or_404(db, user.id)
    return {"wishlist": populate_products(db, doc.get("wishlist", []))}


@router.delete("/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, user: TokenUser = Depends(shopper), db: Database = Depends(get_db)):
    doc = get_user_or_404(db, user.id)
    updated = db["user"].find_one_and_update(
        {"_id": doc["_id"]},
        {"$pull": {"wishlist": {"product_id": product_id}}},
        return_document=ReturnDocument.AFTER,
    )
    return {"message": "Removed from the wishlist", "wishlist": populate_products(db, updated.get("wishlist", []))}


# Reviews

@router.patch("/reviews/{product_id}")
def add_review(
    product_id: str,
    payload: ReviewRequest,
    user: TokenUser = Depends(shopper),
    db: Database = Depends(get_db),
    cache: ProductCache = Depends(get_cache),
):
    product = get_product_or_404(db, product_id)
    try:
        # One review per user, the latest replaces the earlier one
        db["product"].update_one({"_id": product["_id"]}, {"$pull": {"reviews": {"rated_by": user.id}}})
        review = Review(rated_by=user.id, rating=payload.rating, feedback=payload.feedback)
        updated = db["product"].find_one_and_update(
            {"_id": product["_id"]},
            {"$push": {"reviews": review.model_dump()}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise HTTPException(status_code=404, detail="Product not found")
        cache.invalidate_product(product_id)
        return {"message": "Review added", "product": to_str_id(updated)}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Adding review failed", product_id=product_id)
        raise HTTPException(status_code=500, detail="Something went wrong while adding the review")
