import logging

from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

from database import Database, get_db, to_object_id, utcnow
from errors import NotFound, Unauthenticated, ValidationError
from schemas import (
    ROLES,
    CurrentUser,
    ForgotPassword,
    LoginRequest,
    PasswordChange,
    ProfileUpdate,
    RegisterRequest,
    User,
    UserUpdate,
)
from security import (
    create_access_token,
    get_current_user,
    get_password_hash,
    get_settings,
    require_admin,
    user_view,
    verify_password,
)
from settings import Settings

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
users_router = APIRouter(prefix="/api/users", tags=["users"])

PUBLIC_USER_FIELDS = ("email", "full_name", "phone", "avatar_url", "role", "created_at", "updated_at")


class Token(BaseModel):
    access_token: str
    token_type: str


def public_user(user: dict) -> dict:
    data = {k: user.get(k) for k in PUBLIC_USER_FIELDS}
    data["id"] = str(user["_id"])
    return data


def authenticate_user(db: Database, email: str, password: str):
    user = db.find_user_by_email(email)
    if not user or not verify_password(password, user.get("password")):
        return None
    return user


@auth_router.post("/register", status_code=status.HTTP_201_CREATED)
@auth_router.post("/signup", status_code=status.HTTP_201_CREATED, include_in_schema=False)
def register(
    payload: RegisterRequest,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    role = "customer"
    if payload.role:
        if payload.role == "admin" or payload.role not in settings.allowed_signup_roles:
            raise ValidationError("Invalid role")
        role = payload.role

    if db.find_user_by_email(payload.email):
        raise ValidationError("User already registered")
    user = User(
        email=payload.email,
        password=get_password_hash(payload.password),
        full_name=payload.full_name or payload.email.split("@")[0],
        role=role,
    )
    try:
        inserted_id = db.create_document("user", user)
    except DuplicateKeyError:
        raise ValidationError("User already registered")
    doc = db.find_user(inserted_id)
    logger.info("Registered user %s (%s)", inserted_id, role)
    return {
        "success": True,
        "message": "Account created successfully",
        "access_token": create_access_token(doc, settings),
        "user": {"id": str(inserted_id), "email": doc["email"], "full_name": doc["full_name"], "role": doc["role"]},
    }


@auth_router.post("/login")
def login(
    payload: LoginRequest,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = authenticate_user(db, payload.email, payload.password)
    if user is None:
        raise Unauthenticated("Invalid login credentials")
    view = user_view(user).model_dump(exclude={"created_at"})
    return {
        "success": True,
        "message": "Login successful",
        "access_token": create_access_token(user, settings),
        "user": view,
    }


@auth_router.post("/token", response_model=Token)
def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = authenticate_user(db, form_data.username, form_data.password)
    if user is None:
        raise ValidationError("Incorrect username or password")
    return {"access_token": create_access_token(user, settings), "token_type": "bearer"}


@auth_router.post("/logout")
def logout(_: CurrentUser = Depends(get_current_user)):
    # tokens are stateless; the client discards its copy
    return {"success": True, "message": "Logged out successfully"}


@auth_router.get("/me")
def me(current: CurrentUser = Depends(get_current_user)):
    return {"success": True, "data": current}


@auth_router.patch("/profile")
def update_profile(
    payload: ProfileUpdate,
    current: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    updates = payload.model_dump(exclude_unset=True)
    updates["updated_at"] = utcnow()
    db["user"].update_one({"_id": to_object_id(current.id)}, {"$set": updates})
    user = db.find_user(current.id)
    if user is None:
        raise NotFound("User not found")
    return {"success": True, "data": public_user(user)}


@auth_router.post("/change-password")
def change_password(
    payload: PasswordChange,
    current: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    user = db.find_user(current.id)
    if user is None:
        raise NotFound("User not found")
    if not verify_password(payload.currentPassword, user.get("password")):
        raise ValidationError("Current password is incorrect")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password": get_password_hash(payload.newPassword), "updated_at": utcnow()}},
    )
    logger.info("Password changed for user %s", current.id)
    return {"success": True, "message": "Password changed successfully"}


@auth_router.post("/forgot-password")
def forgot_password(payload: ForgotPassword):
    return {"success": True, "message": "If this email exists, a reset link has been sent"}


# Admin user management

@users_router.get("")
def list_users(_: CurrentUser = Depends(require_admin), db: Database = Depends(get_db)):
    return {"success": True, "data": [public_user(u) for u in db.get_documents("user")]}


@users_router.get("/{user_id}")
def get_user(user_id: str, _: CurrentUser = Depends(require_admin), db: Database = Depends(get_db)):
    user = db.find_user(user_id)
    if user is None:
        raise NotFound("User not found")
    return {"success": True, "data": public_user(user)}


@users_router.patch("/{user_id}")
def update_user(
    user_id: str,
    payload: UserUpdate,
    _: CurrentUser = Depends(require_admin),
    db: Database = Depends(get_db),
):
    updates = payload.model_dump(exclude_unset=True)
    if "role" in updates and updates["role"] not in ROLES:
        raise ValidationError("Invalid role")
    user = db.find_user(user_id)
    if user is None:
        raise NotFound("User not found")
    updates["updated_at"] = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": updates})
    if "role" in updates:
        logger.info("Role of user %s set to %s", user_id, updates["role"])
    return {"success": True, "data": public_user(db.find_user(user_id))}


@users_router.delete("/{user_id}")
def delete_user(user_id: str, admin: CurrentUser = Depends(require_admin), db: Database = Depends(get_db)):
    user = db.find_user(user_id)
    if user is None:
        raise NotFound("User not found")
    # orders stay behind as payment records; reviews go with their author
    db["review"].delete_many({"user_id": str(user["_id"])})
    db["user"].delete_one({"_id": user["_id"]})
    logger.info("User %s deleted by %s", user_id, admin.id)
    return {"success": True, "message": "User deleted"}


def ensure_admin_user(db: Database, settings: Settings):
    """Create the configured default admin, or promote the account if it exists."""
    email = settings.default_admin_email
    existing = db.find_user_by_email(email)
    if existing is None:
        user = User(
            email=email,
            password=get_password_hash(settings.default_admin_password),
            full_name=settings.default_admin_name,
            phone=settings.default_admin_phone,
            role="admin",
        )
        db.create_document("user", user)
        logger.info("bootstrap.admin_created email=%s", email)
    elif existing.get("role") != "admin":
        db["user"].update_one({"_id": existing["_id"]}, {"$set": {"role": "admin", "updated_at": utcnow()}})
        logger.info("bootstrap.admin_promoted email=%s", email)
