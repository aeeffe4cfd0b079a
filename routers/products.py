"""
Product catalog endpoints.

Reads go through the Redis cache; every write invalidates the product's own
keys and all cached listing pages.
"""
import re
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pymongo import ReturnDocument
from pymongo.database import Database

from cache import ProductCache, get_cache
from database import create_document, get_db, parse_object_id, to_str_id, utcnow
from logging_config import get_logger
from schemas import Product
from security import TokenUser, require_roles
from storage import ImageStorage, get_storage

router = APIRouter(prefix="/api/products", tags=["Products"])
logger = get_logger("shopsmart.products")

MANAGERS = ("admin", "seller")


def split_options(options: Optional[List[str]]) -> List[str]:
    """Accept repeated form fields or a single comma separated value."""
    result: List[str] = []
    for entry in options or []:
        result.extend(part.strip() for part in entry.split(",") if part.strip())
    return result


def can_manage(user: TokenUser, product: Dict[str, Any]) -> bool:
    return user.role == "admin" or str(product.get("owner_id")) == user.id


def get_product_or_404(db: Database, product_id: str) -> Dict[str, Any]:
    oid = parse_object_id(product_id)
    doc = db["product"].find_one({"_id": oid}) if oid else None
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return doc


def build_details(db: Database, doc: Dict[str, Any]) -> Dict[str, Any]:
    """Product with owner and reviewers populated and a rating summary."""
    product = to_str_id(doc)

    owner_oid = parse_object_id(product.get("owner_id"))
    owner = db["user"].find_one({"_id": owner_oid}, {"name": 1, "email": 1}) if owner_oid else None
    product["owner"] = {"id": str(owner["_id"]), "name": owner.get("name"), "email": owner.get("email")} if owner else None

    reviews = product.get("reviews", [])
    reviewer_ids = [oid for oid in (parse_object_id(r.get("rated_by")) for r in reviews) if oid]
    reviewers = {
        str(u["_id"]): {"id": str(u["_id"]), "name": u.get("name"), "email": u.get("email"), "profile_photo": u.get("profile_photo", "")}
        for u in db["user"].find({"_id": {"$in": reviewer_ids}}, {"name": 1, "email": 1, "profile_photo": 1})
    } if reviewer_ids else {}
    for review in reviews:
        review["rated_by"] = reviewers.get(review.get("rated_by"), {"id": review.get("rated_by")})

    product["reviews_count"] = len(reviews)
    product["average_rating"] = round(sum(r["rating"] for r in reviews) / len(reviews), 2) if reviews else None
    return product


@router.get("")
def list_products(
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    name: Optional[str] = None,
    sort_order: Literal["asc", "desc"] = "asc",
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: TokenUser = Depends(require_roles("user", "admin", "seller")),
    db: Database = Depends(get_db),
    cache: ProductCache = Depends(get_cache),
):
    filt: Dict[str, Any] = {}
    if user.role == "seller":
        filt["owner_id"] = user.id
    if category:
        filt["category"] = category
    if min_price is not None or max_price is not None:
        price_cond: Dict[str, Any] = {}
        if min_price is not None:
            price_cond["$gte"] = float(min_price)
        if max_price is not None:
            price_cond["$lte"] = float(max_price)
        filt["price"] = price_cond
    if name:
        filt["name"] = {"$regex": re.escape(name), "$options": "i"}

    def load() -> List[Dict[str, Any]]:
        cursor = (
            db["product"].find(filt)
            .sort("price", -1 if sort_order == "desc" else 1)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        return [to_str_id(p) for p in cursor]

    has_filters = bool(category or name or min_price is not None or max_price is not None or sort_order == "desc")
    try:
        if has_filters:
            products, cached = load(), False
        else:
            key = cache.product_list_key(user.role, user.id, page, limit)
            products, cached = cache.get_or_load(key, cache.list_ttl, load)
        return {"products": products, "page": page, "limit": limit, "cached": cached}
    except Exception:
        logger.exception("Product listing failed")
        raise HTTPException(status_code=500, detail="Something went wrong while fetching products")


@router.get("/categories")
def list_categories(db: Database = Depends(get_db)):
    try:
        cats = db["product"].distinct("category")
        return sorted([c for c in cats if c])
    except Exception:
        logger.exception("Category listing failed")
        raise HTTPException(status_code=500, detail="Something went wrong while fetching categories")


@router.get("/{product_id}")
def get_product(
    product_id: str,
    user: TokenUser = Depends(require_roles(*MANAGERS)),
    db: Database = Depends(get_db),
    cache: ProductCache = Depends(get_cache),
):
    oid = parse_object_id(product_id)
    if not oid:
        raise HTTPException(status_code=404, detail="Product not found")

    def load():
        doc = db["product"].find_one({"_id": oid})
        return to_str_id(doc) if doc else None

    try:
        product, cached = cache.get_or_load(cache.product_key(product_id), cache.product_ttl, load)
    except Exception:
        logger.exception("Fetching product failed", product_id=product_id)
        raise HTTPException(status_code=500, detail="Something went wrong while fetching product")

    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    # Ownership is checked on the cached copy too
    if not can_manage(user, product):
        raise HTTPException(status_code=403, detail="Access denied")
    return {"product": product, "cached": cached}


@router.get("/{product_id}/details")
def get_product_details(
    product_id: str,
    db: Database = Depends(get_db),
    cache: ProductCache = Depends(get_cache),
):
    oid = parse_object_id(product_id)
    if not oid:
        raise HTTPException(status_code=404, detail="Product not found")

    def load():
        doc = db["product"].find_one({"_id": oid})
        return build_details(db, doc) if doc else None

    try:
        product, cached = cache.get_or_load(cache.product_details_key(product_id), cache.product_ttl, load)
    except Exception:
        logger.exception("Fetching product details failed", product_id=product_id)
        raise HTTPException(status_code=500, detail="Something went wrong while fetching product data")
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"product": product, "cached": cached}


@router.post("", status_code=status.HTTP_201_CREATED)
def add_product(
    name: Optional[str] = Form(None),
    price: Optional[float] = Form(None, ge=0),
    company: str = Form(""),
    available_options: Optional[List[str]] = Form(None),
    category: Optional[str] = Form(None),
    stock: int = Form(0, ge=0),
    image: Optional[UploadFile] = File(None),
    user: TokenUser = Depends(require_roles(*MANAGERS)),
    db: Database = Depends(get_db),
    cache: ProductCache = Depends(get_cache),
    storage: ImageStorage = Depends(get_storage),
):
    if not name or price is None:
        raise HTTPException(status_code=400, detail="Product name and price are required")
    if not image or not image.filename:
        raise HTTPException(status_code=400, detail="Product image is required")

    try:
        product = Product(
            name=name,
            image_url=storage.save(image, "products"),
            price=price,
            company=company,
            available_options=split_options(available_options),
            category=category or "Uncategorized",
            stock=stock,
            owner_id=user.id,
        )
        product_id = create_document(db, "product", product)
        cache.invalidate_product_lists()
        logger.info("Product added", product_id=product_id, owner_id=user.id)
        return {"message": "Product added successfully", "product": to_str_id(db["product"].find_one({"_id": parse_object_id(product_id)}))}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Adding product failed")
        raise HTTPException(status_code=500, detail="Something went wrong while adding product")


@router.put("/{product_id}")
def edit_product(
    product_id: str,
    name: Optional[str] = Form(None),
    price: Optional[float] = Form(None, ge=0),
    company: Optional[str] = Form(None),
    available_options: Optional[List[str]] = Form(None),
    category: Optional[str] = Form(None),
    stock: Optional[int] = Form(None, ge=0),
    image: Optional[UploadFile] = File(None),
    user: TokenUser = Depends(require_roles(*MANAGERS)),
    db: Database = Depends(get_db),
    cache: ProductCache = Depends(get_cache),
    storage: ImageStorage = Depends(get_storage),
):
    product = get_product_or_404(db, product_id)
    if not can_manage(user, product):
        raise HTTPException(status_code=403, detail="Access denied")

    changes: Dict[str, Any] = {
        k: v for k, v in {"name": name, "price": price, "company": company, "category": category, "stock": stock}.items()
        if v is not None
    }
    if available_options is not None:
        changes["available_options"] = split_options(available_options)

    try:
        if image and image.filename:
            changes["image_url"] = storage.save(image, "products")
        changes["updated_at"] = utcnow()
        updated = db["product"].find_one_and_update(
            {"_id": product["_id"]},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        cache.invalidate_product(product_id)
        return {"message": "Product edited successfully", "product": to_str_id(updated)}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Editing product failed", product_id=product_id)
        raise HTTPException(status_code=500, detail="Something went wrong while editing product")


@router.delete("/{product_id}")
def delete_product(
    product_id: str,
    user: TokenUser = Depends(require_roles(*MANAGERS)),
    db: Database = Depends(get_db),
    cache: ProductCache = Depends(get_cache),
):
    product = get_product_or_404(db, product_id)
    if not can_manage(user, product):
        raise HTTPException(status_code=403, detail="Access denied")

    try:
        db["product"].delete_one({"_id": product["_id"]})
        cache.invalidate_product(product_id)
        logger.info("Product deleted", product_id=product_id, by=user.id)
        return {"message": "Product deleted successfully"}
    except Exception:
        logger.exception("Deleting product failed", product_id=product_id)
        raise HTTPException(status_code=500, detail="Something went wrong while deleting product")
