import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, status
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from database import Database, get_db, serialize, to_int, utcnow
from errors import NotFound, ValidationError
from schemas import CurrentUser, Product, ProductUpdate, ReviewCreate
from security import get_current_user, get_optional_user, require_admin

logger = logging.getLogger(__name__)

products_router = APIRouter(prefix="/api/products", tags=["products"])
reviews_router = APIRouter(prefix="/api/reviews", tags=["reviews"])


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def is_admin(user: Optional[CurrentUser]) -> bool:
    return user is not None and user.role == "admin"


@products_router.get("")
def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    featured: Optional[bool] = None,
    limit: Optional[int] = None,
    current: Optional[CurrentUser] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    query = {}
    if not is_admin(current):
        query["is_active"] = True
    if featured:
        query["featured"] = True
    if category and category != "all":
        query["category"] = category
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"description": pattern}, {"short_description": pattern}]
    items = db.get_documents("product", query, limit)
    return {"success": True, "data": [serialize(it) for it in items]}


@products_router.get("/{slug_or_id}")
def get_product(
    slug_or_id: str,
    current: Optional[CurrentUser] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    product = db.find_product(slug_or_id)
    if product is None or (not product.get("is_active", True) and not is_admin(current)):
        raise NotFound("Product not found")
    return {"success": True, "data": serialize(product)}


@products_router.post("", status_code=status.HTTP_201_CREATED)
def create_product(product: Product, _: CurrentUser = Depends(require_admin), db: Database = Depends(get_db)):
    data = product.model_dump()
    data["slug"] = product.slug or slugify(product.name)
    if not data["slug"]:
        raise ValidationError("A slug could not be derived from the product name")
    if db["product"].find_one({"slug": data["slug"]}):
        raise ValidationError("Product with this slug already exists")
    try:
        product_id = db.create_document("product", data, _id=db.next_sequence("product"))
    except DuplicateKeyError:
        raise ValidationError("Product with this slug already exists")
    logger.info("Product %s created (%s)", product_id, data["slug"])
    return {"success": True, "data": serialize(db["product"].find_one({"_id": product_id}))}


@products_router.patch("/{slug_or_id}")
def update_product(
    slug_or_id: str,
    payload: ProductUpdate,
    _: CurrentUser = Depends(require_admin),
    db: Database = Depends(get_db),
):
    product = db.find_product(slug_or_id)
    if product is None:
        raise NotFound("Product not found")
    updates = payload.model_dump(exclude_unset=True)
    if updates.get("slug", "") is None:
        # a null slug would collide in the unique index
        del updates["slug"]
    updates["updated_at"] = utcnow()
    try:
        db["product"].update_one({"_id": product["_id"]}, {"$set": updates})
    except DuplicateKeyError:
        raise ValidationError("Product with this slug already exists")
    return {"success": True, "data": serialize(db["product"].find_one({"_id": product["_id"]}))}


@products_router.delete("/{slug_or_id}")
def delete_product(slug_or_id: str, _: CurrentUser = Depends(require_admin), db: Database = Depends(get_db)):
    product = db.find_product(slug_or_id)
    if product is None:
        raise NotFound("Product not found")
    db["product"].delete_one({"_id": product["_id"]})
    logger.info("Product %s deleted", product["_id"])
    return {"success": True, "message": "Product deleted"}


# Reviews

def review_view(db: Database, review: dict) -> dict:
    data = serialize(review)
    author = db.find_user(review.get("user_id"))
    data["profiles"] = (
        {"full_name": author.get("full_name"), "avatar_url": author.get("avatar_url")} if author else None
    )
    return data


@reviews_router.get("/{product_id}")
def list_reviews(product_id: str, db: Database = Depends(get_db)):
    pid = to_int(product_id)
    if pid is None:
        product = db["product"].find_one({"slug": product_id})
        pid = product["_id"] if product else None
    if pid is None:
        return {"success": True, "data": []}
    reviews = db["review"].find({"product_id": pid}).sort("created_at", DESCENDING)
    return {"success": True, "data": [review_view(db, r) for r in reviews]}


@reviews_router.post("", status_code=status.HTTP_201_CREATED)
def create_review(
    payload: ReviewCreate,
    current: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if db["product"].find_one({"_id": payload.product_id}) is None:
        raise NotFound("Product not found")
    review_id = db.create_document("review", {
        "user_id": current.id,
        "product_id": payload.product_id,
        "rating": payload.rating,
        "comment": payload.comment,
    })
    return {"success": True, "data": review_view(db, db["review"].find_one({"_id": review_id}))}
