"""
Checkout through the external payment provider.

An order moves through three phases, keyed by the locally generated order
number that is also the provider's order id:

1. initiate: the provider order is created first; only then is a local
   ``pending`` order stored. A provider failure leaves no local trace.
2. checkout: the client pays on the provider's hosted page using the
   session handle (out of band, nothing happens here).
3. verify: the provider is asked for the order status; a ``PAID`` order
   moves every matching local row to ``completed``. Rows that are already
   ``completed`` are not touched again, so status never goes backwards and
   the recorded payment reference is stable across repeated calls.
"""

import logging
import random
import re
import string
import time
from typing import List, Optional

from fastapi import APIRouter, Depends
from pymongo.errors import PyMongoError

from cashfree import PAID, CashfreeClient, get_provider
from database import Database, get_db, serialize, to_int, utcnow
from errors import PaymentProviderError, ValidationError
from schemas import CurrentUser, Order, PaymentOrderCreate, PaymentVerify
from security import get_current_user, get_settings
from settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])

ORDER_PREFIX = "MP"
ORDER_NUMBER_ATTEMPTS = 5
BASE36 = string.digits + string.ascii_uppercase
DEFAULT_PHONE = "9999999999"


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(BASE36[rem])
    return "".join(reversed(digits))


def generate_order_number() -> str:
    suffix = "".join(random.choices(BASE36, k=4))
    return ORDER_PREFIX + _base36(int(time.time() * 1000)) + suffix


def new_order_number(db: Database) -> str:
    # the unique index on order.order_number still backs this up
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        order_number = generate_order_number()
        try:
            taken = db["order"].count_documents({"order_number": order_number}, limit=1)
        except PyMongoError as exc:
            logger.warning("Order number check for %s skipped, storage unavailable: %s", order_number, exc)
            return order_number
        if not taken:
            return order_number
        logger.warning("Order number %s already taken, regenerating", order_number)
    raise RuntimeError("Could not allocate a unique order number")


def customer_details(user: CurrentUser) -> dict:
    customer_id = re.sub(r"[^a-zA-Z0-9]", "", user.id)[:50] or "guest"
    phone = re.sub(r"[^0-9]", "", user.phone or "")[-10:] or DEFAULT_PHONE
    return {
        "customer_id": customer_id,
        "customer_email": user.email,
        "customer_phone": phone,
        "customer_name": user.full_name or user.email.split("@")[0],
    }


def _lookup_product(db: Database, product_id) -> Optional[dict]:
    try:
        return db.find_product(product_id)
    except PyMongoError as exc:
        logger.warning("Product lookup for %s failed, using requested amount: %s", product_id, exc)
        return None


def local_order_view(db: Database, order_number: str) -> Optional[dict]:
    """The stored order joined with its product, or None if it cannot be read."""
    try:
        order = db["order"].find_one({"order_number": order_number})
        if order is None:
            return None
        view = serialize(order)
        product = db["product"].find_one({"_id": order.get("product_id")}) if order.get("product_id") is not None else None
        view["products"] = (
            {k: product.get(k) for k in ("name", "slug", "image_url", "price")} if product else None
        )
        return view
    except PyMongoError as exc:
        logger.warning("Could not read local order %s: %s", order_number, exc)
        return None


def initiate_payment(db: Database, provider: CashfreeClient, settings: Settings,
                     user: CurrentUser, payload: PaymentOrderCreate) -> dict:
    if payload.product_id in (None, ""):
        raise ValidationError("product_id is required")

    product = _lookup_product(db, payload.product_id)
    amount = payload.amount or (product or {}).get("price") or 0
    if amount <= 0:
        raise ValidationError("amount is required")
    product_name = (product or {}).get("name") or payload.product_name

    order_number = new_order_number(db)
    provider_order = provider.create_order({
        "order_id": order_number,
        "order_amount": amount,
        "order_currency": settings.payment_currency,
        "customer_details": customer_details(user),
        "order_meta": {"return_url": settings.frontend_url.rstrip("/") + "/payment/success?order_id={order_id}"},
        "order_note": product_name or "Marketplace purchase",
    })
    session_id = provider_order.get("payment_session_id")
    if not session_id:
        logger.error("Provider order %s has no payment_session_id: %s", order_number, provider_order)
        raise PaymentProviderError(provider_order.get("message") or "Failed to create payment order")
    cf_order_id = provider_order.get("cf_order_id")

    db_order_id = None
    try:
        order = Order(
            user_id=user.id,
            product_id=product["_id"] if product else to_int(payload.product_id),
            product_name=product_name or f"Product {str(payload.product_id)[:8]}",
            order_number=order_number,
            amount=amount,
            status="pending",
            payment_method="cashfree",
            payment_id=str(cf_order_id or ""),
        )
        db_order_id = str(db.create_document("order", order))
    except PyMongoError as exc:
        # the customer can still pay; operators reconcile from this event
        logger.error(
            "payment.orphaned_provider_order order_number=%s cf_order_id=%s user_id=%s error=%s",
            order_number, cf_order_id, user.id, exc,
        )

    logger.info("Payment order %s created for user %s (amount %s)", order_number, user.id, amount)
    return {
        "order_id": order_number,
        "payment_session_id": session_id,
        "cf_order_id": cf_order_id,
        "order_amount": amount,
        "product_name": product_name,
        "db_order_id": db_order_id,
    }


def _fetch_payments(provider: CashfreeClient, order_number: str) -> List[dict]:
    try:
        return provider.get_payments(order_number)
    except PaymentProviderError as exc:
        logger.warning("Could not list payments for %s: %s", order_number, exc.detail)
        return []


def reconcile(db: Database, settings: Settings, order_number: str,
              provider_order: dict, payments: List[dict]) -> bool:
    """Mark local rows completed for a paid provider order. Returns True if applied."""
    payment_id = payments[0].get("cf_payment_id") if payments else None
    payment_id = str(payment_id) if payment_id else str(provider_order.get("cf_order_id") or "")
    try:
        if settings.enforce_amount_match:
            local = db["order"].find_one({"order_number": order_number})
            if local is not None and provider_order.get("order_amount") is not None \
                    and float(provider_order["order_amount"]) != float(local.get("amount", 0)):
                logger.error(
                    "payment.amount_mismatch order_number=%s provider=%s local=%s",
                    order_number, provider_order.get("order_amount"), local.get("amount"),
                )
                return False
        result = db["order"].update_many(
            {"order_number": order_number, "status": {"$ne": "completed"}},
            {"$set": {"status": "completed", "payment_id": payment_id, "updated_at": utcnow()}},
        )
    except PyMongoError as exc:
        logger.error("Could not mark order %s completed: %s", order_number, exc)
        return False
    if result.modified_count:
        logger.info("Order %s completed (payment %s)", order_number, payment_id)
    return True


def verify_payment(db: Database, provider: CashfreeClient, settings: Settings, order_number: str) -> dict:
    if not order_number:
        raise ValidationError("order_id is required")
    provider_order = provider.get_order(order_number)
    payments = _fetch_payments(provider, order_number)
    is_paid = provider_order.get("order_status") == PAID
    if is_paid:
        reconcile(db, settings, order_number, provider_order, payments)

    db_order = local_order_view(db, order_number)
    first = payments[0] if payments else {}
    return {
        "order_id": provider_order.get("order_id") or order_number,
        "order_status": provider_order.get("order_status"),
        "order_amount": provider_order.get("order_amount"),
        "order_currency": provider_order.get("order_currency") or settings.payment_currency,
        "cf_order_id": provider_order.get("cf_order_id"),
        "payment_method": first.get("payment_group") or "online",
        "payment_time": first.get("payment_time"),
        "is_paid": is_paid,
        "product_name": (db_order or {}).get("product_name") or provider_order.get("order_note") or "Marketplace purchase",
        "db_order": db_order,
    }


def payment_status(db: Database, provider: CashfreeClient, order_number: str) -> dict:
    provider_order = provider.get_order(order_number)
    db_order = local_order_view(db, order_number)
    return {
        "order_id": provider_order.get("order_id") or order_number,
        "order_status": provider_order.get("order_status"),
        "order_amount": provider_order.get("order_amount"),
        "is_paid": provider_order.get("order_status") == PAID,
        "product_name": (db_order or {}).get("product_name") or provider_order.get("order_note") or "Marketplace purchase",
        "db_order": db_order,
    }


@router.post("/create-order")
def create_payment_order(
    payload: PaymentOrderCreate,
    current: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
    provider: CashfreeClient = Depends(get_provider),
    settings: Settings = Depends(get_settings),
):
    return {"success": True, "data": initiate_payment(db, provider, settings, current, payload)}


@router.post("/verify")
def verify(
    payload: PaymentVerify,
    _: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
    provider: CashfreeClient = Depends(get_provider),
    settings: Settings = Depends(get_settings),
):
    return {"success": True, "data": verify_payment(db, provider, settings, payload.order_id)}


@router.get("/status/{order_id}")
def status(
    order_id: str,
    db: Database = Depends(get_db),
    provider: CashfreeClient = Depends(get_provider),
):
    return {"success": True, "data": payment_status(db, provider, order_id)}
