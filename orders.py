import logging

from fastapi import APIRouter, Depends, status

from database import Database, get_db, serialize
from errors import NotFound, Unauthorized
from payments import new_order_number
from schemas import CurrentUser, Order, OrderCreate
from security import get_current_user, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

PRODUCT_FIELDS = ("name", "slug", "image_url", "demo_url")


def order_view(db: Database, order: dict, with_user: bool = False) -> dict:
    data = serialize(order)
    product = db["product"].find_one({"_id": order.get("product_id")}) if order.get("product_id") is not None else None
    data["products"] = {k: product.get(k) for k in PRODUCT_FIELDS} if product else None
    if with_user:
        user = db.find_user(order.get("user_id"))
        data["profiles"] = {"full_name": user.get("full_name"), "email": user.get("email")} if user else None
    return data


# registered before /{order_id} so "admin" is never read as an id
@router.get("/admin/all")
def list_all_orders(_: CurrentUser = Depends(require_admin), db: Database = Depends(get_db)):
    orders = db.get_documents("order")
    return {"success": True, "data": [order_view(db, o, with_user=True) for o in orders]}


@router.get("")
def list_orders(current: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    orders = db.get_documents("order", {"user_id": current.id})
    return {"success": True, "data": [order_view(db, o) for o in orders]}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_order(
    payload: OrderCreate,
    current: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """Record a purchase paid outside the provider checkout; it is stored as completed."""
    product = db["product"].find_one({"_id": payload.product_id})
    order = Order(
        user_id=current.id,
        product_id=payload.product_id,
        product_name=product["name"] if product else f"Product {payload.product_id}",
        order_number=new_order_number(db),
        amount=payload.amount or (product or {}).get("price", 0),
        status="completed",
        payment_method=payload.payment_method or "stripe",
    )
    order_id = db.create_document("order", order)
    logger.info("Direct order %s created for user %s", order.order_number, current.id)
    return {"success": True, "data": order_view(db, db["order"].find_one({"_id": order_id}))}


@router.get("/{order_id}")
def get_order(order_id: str, current: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    order = db.find_order(order_id)
    if order is None:
        raise NotFound("Order not found")
    if order.get("user_id") != current.id and current.role != "admin":
        raise Unauthorized("Access denied")
    return {"success": True, "data": order_view(db, order)}
