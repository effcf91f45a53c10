import logging

from fastapi import APIRouter, Depends, status

from database import Database, get_db, serialize, to_int, utcnow
from errors import NotFound, ValidationError
from schemas import ContactCreate, CurrentUser
from security import require_admin

logger = logging.getLogger(__name__)

contact_router = APIRouter(prefix="/api/contact", tags=["contact"])
stats_router = APIRouter(prefix="/api/admin", tags=["admin"])


@contact_router.post("", status_code=status.HTTP_201_CREATED)
def submit_contact(msg: ContactCreate, db: Database = Depends(get_db)):
    data = msg.model_dump()
    data["is_read"] = False
    message_id = db.create_document("contact_message", data, _id=db.next_sequence("contact_message"))
    return {"success": True, "data": serialize(db["contact_message"].find_one({"_id": message_id}))}


@contact_router.get("")
def list_contacts(_: CurrentUser = Depends(require_admin), db: Database = Depends(get_db)):
    return {"success": True, "data": [serialize(m) for m in db.get_documents("contact_message")]}


@contact_router.patch("/{message_id}/read")
def mark_read(message_id: str, _: CurrentUser = Depends(require_admin), db: Database = Depends(get_db)):
    mid = to_int(message_id)
    if mid is None:
        raise ValidationError("Invalid ID")
    result = db["contact_message"].update_one({"_id": mid}, {"$set": {"is_read": True, "updated_at": utcnow()}})
    if result.matched_count == 0:
        raise NotFound("Message not found")
    return {"success": True, "data": serialize(db["contact_message"].find_one({"_id": mid}))}


# Simple admin dashboard stats (secured)
@stats_router.get("/stats")
def admin_stats(_: CurrentUser = Depends(require_admin), db: Database = Depends(get_db)):
    completed = db["order"].find({"status": "completed"}, {"amount": 1})
    return {
        "success": True,
        "data": {
            "totalUsers": db["user"].count_documents({}),
            "totalProducts": db["product"].count_documents({}),
            "totalOrders": db["order"].count_documents({}),
            "totalRevenue": sum(o.get("amount") or 0 for o in completed),
        },
    }
