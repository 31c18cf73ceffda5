import logging
import os
import re
import shutil
import uuid
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pymongo.errors import DuplicateKeyError, PyMongoError

import admin
import config
import database
from activity import log_activity
from checkout import EphemeralCart, PersistedCart, cancel_own_order, place_order, update_status
from database import (
    collection, count_documents, create_document, delete_document, delete_documents, find_and_update,
    get_document, get_document_by_id, get_documents, get_page, object_id, update_document, utcnow,
)
from errors import AuthError, ConflictError, DatabaseUnavailable, ForbiddenError, NotFoundError, ValidationError, register_error_handlers
from logging_config import setup_logging
from schemas import (
    MAX_CART_QUANTITY, PHONE_PATTERN, Cart, Message, OrderStatus, PaymentMethod, PaymentStatus, Product,
    ProductCategory, User,
)
from security import create_token, get_current_user, hash_password, public_user, require_admin, verify_password

setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes()
    else:
        logger.warning("DATABASE_URL/DATABASE_NAME not set; data endpoints will fail")
    yield


app = FastAPI(title="Food Ordering API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR, check_dir=False), name="uploads")

app.include_router(admin.router)
app.include_router(admin.settings_router)
app.include_router(admin.activity_router)


def _normalize_email(value: str, max_length: int = 50) -> str:
    value = value.strip().lower()
    if len(value) > max_length:
        raise ValueError(f"Email must be at most {max_length} characters")
    return value


def _page_response(page: dict, key: str) -> dict:
    return {
        key: page["items"],
        "total_pages": page["total_pages"],
        "current_page": page["current_page"],
        "total": page["total"],
    }


# ===================== Public Endpoints =====================
@app.get("/")
def root():
    return {"message": "Food Ordering API running"}


@app.get("/health")
def health():
    response = {"backend": "running", "database": "not configured", "collections": []}
    try:
        response["collections"] = sorted(collection("user").database.list_collection_names())
        response["database"] = "connected"
    except DatabaseUnavailable:
        pass
    except PyMongoError as e:
        response["database"] = f"error: {str(e)[:80]}"
    return response


# ===================== Auth =====================
class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    phone: str = Field(..., pattern=PHONE_PATTERN)
    password: str = Field(..., min_length=6)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        return _normalize_email(v)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower()


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    address: Optional[str] = Field(None, max_length=500)


def _auth_response(user: dict) -> dict:
    return {
        "token": create_token(user["_id"]),
        "user": {
            "id": user["_id"],
            "name": user["name"],
            "email": user["email"],
            "phone": user["phone"],
            "is_admin": user.get("is_admin", False),
        },
    }


@app.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, request: Request):
    existing = get_document("user", {"$or": [{"email": payload.email}, {"phone": payload.phone}]})
    if existing:
        raise ConflictError("User with this email or phone number already exists")
    user = User(name=payload.name, email=payload.email, phone=payload.phone, password_hash=hash_password(payload.password))
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        raise ConflictError("User with this email or phone number already exists")
    log_activity(user_id, "register", "user", user_id, {"email": user.email}, request)
    return _auth_response(get_document_by_id("user", user_id))


@app.post("/auth/login")
def login(payload: LoginRequest, request: Request):
    user = get_document("user", {"email": payload.email})
    if not user:
        logger.info("Login failed for unknown email")
        raise AuthError("Invalid credentials")
    if not verify_password(payload.password, user["password_hash"]):
        log_activity(user["_id"], "failed_login", "user", user["_id"], {}, request)
        logger.info("Login failed for user %s", user["_id"])
        raise AuthError("Invalid credentials")
    if not user.get("is_active", True):
        raise ForbiddenError("Account is deactivated")
    log_activity(user["_id"], "login", "user", user["_id"], {}, request)
    return _auth_response(user)


@app.get("/auth/me")
def me(user: dict = Depends(get_current_user)):
    return {"user": public_user(user)}


@app.put("/auth/profile")
def update_profile(payload: ProfileUpdate, user: dict = Depends(get_current_user)):
    changes = payload.model_dump(exclude_none=True)
    if changes:
        update_document("user", user["_id"], changes)
    return {"user": public_user(get_document_by_id("user", user["_id"]))}


# ===================== Products =====================
def save_image(upload: UploadFile) -> str:
    ext = os.path.splitext(upload.filename or "")[1].lower()
    if ext not in config.ALLOWED_IMAGE_EXTS:
        raise ValidationError("Unsupported image type", errors=[{"field": "image", "message": "Image must be one of " + ", ".join(sorted(config.ALLOWED_IMAGE_EXTS))}])
    os.makedirs(config.UPLOAD_DIR, exist_ok=True)
    filename = f"{uuid.uuid4().hex}{ext}"
    with open(os.path.join(config.UPLOAD_DIR, filename), "wb") as out:
        shutil.copyfileobj(upload.file, out)
    return filename


@app.get("/products")
def list_products(category: Optional[ProductCategory] = None, search: Optional[str] = None, page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100)):
    filter_q = {}
    if category:
        filter_q["category"] = category
    if search:
        filter_q["name"] = {"$regex": re.escape(search), "$options": "i"}
    result = get_page("product", filter_q, page=page, limit=limit, sort=[("created_at", -1)])
    return _page_response(result, "products")


@app.get("/products/categories/list")
def list_categories():
    return sorted(collection("product").distinct("category"))


@app.get("/products/{product_id}")
def get_product(product_id: str):
    product = get_document_by_id("product", product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


@app.post("/products", status_code=201)
def create_product(
    request: Request,
    name: str = Form(..., min_length=1, max_length=100),
    category: ProductCategory = Form(...),
    price: float = Form(..., ge=0),
    description: str = Form("", max_length=500),
    image: Optional[UploadFile] = File(None),
    user: dict = Depends(require_admin),
):
    name = name.strip()
    if not name:
        raise ValidationError("Product name is required", errors=[{"field": "name", "message": "Product name is required"}])
    if image is None or not image.filename:
        raise ValidationError("Product image is required", errors=[{"field": "image", "message": "Product image is required"}])
    if get_document("product", {"name": name}):
        raise ConflictError("Product with this name already exists")
    product = Product(name=name, category=category, price=price, image=save_image(image), description=description)
    product_id = create_document("product", product)
    log_activity(user["_id"], "create", "product", product_id, {"name": name, "price": price}, request)
    return get_document_by_id("product", product_id)


@app.put("/products/{product_id}")
def update_product(
    product_id: str,
    request: Request,
    name: Optional[str] = Form(None, max_length=100),
    category: Optional[ProductCategory] = Form(None),
    price: Optional[float] = Form(None, ge=0),
    description: Optional[str] = Form(None, max_length=500),
    image: Optional[UploadFile] = File(None),
    user: dict = Depends(require_admin),
):
    product = get_document_by_id("product", product_id)
    if not product:
        raise NotFoundError("Product not found")
    changes = {}
    if name and name.strip():
        name = name.strip()
        clash = get_document("product", {"name": name})
        if clash and clash["_id"] != product_id:
            raise ConflictError("Product with this name already exists")
        changes["name"] = name
    if category:
        changes["category"] = category
    if price is not None:
        changes["price"] = price
    if description is not None:
        changes["description"] = description
    if image is not None and image.filename:
        changes["image"] = save_image(image)
    if changes:
        update_document("product", product_id, changes)
        log_activity(user["_id"], "update", "product", product_id, {"changes": changes}, request)
    return get_document_by_id("product", product_id)


@app.delete("/products/{product_id}")
def delete_product(product_id: str, request: Request, user: dict = Depends(require_admin)):
    product = get_document_by_id("product", product_id)
    if not product or not delete_document("product", product_id):
        raise NotFoundError("Product not found")
    # image files stay on disk: order snapshots keep referencing them
    log_activity(user["_id"], "delete", "product", product_id, {"name": product["name"]}, request)
    return {"message": "Product deleted successfully"}


# ===================== Cart =====================
class CartAddRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)

    @field_validator("product_id")
    @classmethod
    def check_product_id(cls, v):
        if object_id(v) is None:
            raise ValueError("Invalid product ID")
        return v


class CartUpdateRequest(BaseModel):
    quantity: int = Field(..., ge=1)


def _with_product(line: dict) -> dict:
    product = get_document_by_id("product", line["product_id"])
    line["product"] = None
    if product:
        line["product"] = {k: product.get(k) for k in ("_id", "name", "price", "image", "category")}
    return line


def _add_to_cart(user_id: str, product_id: str, quantity: int) -> dict:
    """Upsert the (user, product) line, adding to any existing quantity and capping it."""
    line = Cart(user_id=user_id, product_id=product_id, quantity=min(quantity, MAX_CART_QUANTITY))
    key = {"user_id": line.user_id, "product_id": line.product_id}
    carts = collection("cart")
    now = utcnow()
    update = {"$inc": {"quantity": line.quantity}, "$set": {"updated_at": now}, "$setOnInsert": {"created_at": now}}
    try:
        carts.update_one(key, update, upsert=True)
    except DuplicateKeyError:
        # another request inserted the line first
        carts.update_one(key, update)
    carts.update_one(dict(key, quantity={"$gt": MAX_CART_QUANTITY}), {"$set": {"quantity": MAX_CART_QUANTITY}})
    return get_document("cart", key)


@app.get("/cart")
def get_cart(user: dict = Depends(get_current_user)):
    lines = get_documents("cart", {"user_id": user["_id"]}, sort=[("created_at", 1)])
    return [_with_product(line) for line in lines]


@app.get("/cart/count")
def cart_count(user: dict = Depends(get_current_user)):
    return {"count": count_documents("cart", {"user_id": user["_id"]})}


@app.post("/cart/add")
def add_to_cart(payload: CartAddRequest, user: dict = Depends(get_current_user)):
    if not get_document_by_id("product", payload.product_id):
        raise NotFoundError("Product not found")
    line = _add_to_cart(user["_id"], payload.product_id, payload.quantity)
    return _with_product(line)


@app.put("/cart/{item_id}")
def update_cart_item(item_id: str, payload: CartUpdateRequest, user: dict = Depends(get_current_user)):
    oid = object_id(item_id)
    line = None
    if oid is not None:
        quantity = min(payload.quantity, MAX_CART_QUANTITY)
        line = find_and_update("cart", {"_id": oid, "user_id": user["_id"]}, {"quantity": quantity})
    if not line:
        raise NotFoundError("Cart item not found")
    return _with_product(line)


@app.delete("/cart/{item_id}")
def remove_cart_item(item_id: str, user: dict = Depends(get_current_user)):
    oid = object_id(item_id)
    if oid is None or not delete_documents("cart", {"_id": oid, "user_id": user["_id"]}):
        raise NotFoundError("Cart item not found")
    return {"message": "Item removed from cart"}


@app.delete("/cart")
def clear_cart(user: dict = Depends(get_current_user)):
    delete_documents("cart", {"user_id": user["_id"]})
    return {"message": "Cart cleared"}


# ===================== Orders =====================
class CheckoutRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    phone: str = Field(..., pattern=PHONE_PATTERN)
    address: str = Field(..., min_length=1, max_length=500)
    payment_method: PaymentMethod

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        return _normalize_email(v)

    def contact(self) -> dict:
        return {"name": self.name, "email": self.email, "phone": self.phone, "address": self.address}


class GuestItem(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1, le=MAX_CART_QUANTITY)


class GuestCheckoutRequest(CheckoutRequest):
    items: List[GuestItem] = []


class OrderStatusUpdate(BaseModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None


def _customer_info(order: dict) -> dict:
    if order.get("is_guest_order"):
        return {"name": order["name"], "email": order["email"], "phone": order["phone"], "type": "guest"}
    user = get_document_by_id("user", order.get("user_id")) or {}
    return {
        "name": user.get("name", "Unknown"),
        "email": user.get("email", "Unknown"),
        "phone": user.get("phone", "Unknown"),
        "type": "registered",
    }


@app.post("/orders/guest", status_code=201)
def create_guest_order(payload: GuestCheckoutRequest):
    source = EphemeralCart((item.product_id, item.quantity) for item in payload.items)
    order = place_order(source, payload.contact(), payload.payment_method)
    return {
        "message": "Order placed successfully and automatically confirmed!",
        "order": order,
        "tracking_info": {
            "order_id": order["_id"],
            "email": order["email"],
            "message": "Your order has been automatically confirmed. You can track it using your order ID and email.",
        },
    }


@app.get("/orders/track/{order_id}")
def track_order(order_id: str, email: str = Query(..., min_length=1)):
    order = get_document_by_id("order", order_id)
    # same answer for an unknown id and a wrong email
    if not order or order.get("email") != email.strip().lower():
        raise NotFoundError("Order not found or email does not match")
    order.pop("user_id", None)
    return order


@app.post("/orders", status_code=201)
def create_order(payload: CheckoutRequest, request: Request, user: dict = Depends(get_current_user)):
    order = place_order(PersistedCart(user["_id"]), payload.contact(), payload.payment_method)
    log_activity(user["_id"], "create", "order", order["_id"], {"total_price": order["total_price"]}, request)
    return order


@app.get("/orders/my-orders")
def my_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100), user: dict = Depends(get_current_user)):
    result = get_page("order", {"user_id": user["_id"]}, page=page, limit=limit, sort=[("created_at", -1)])
    return _page_response(result, "orders")


@app.get("/orders")
def list_orders(status: Optional[OrderStatus] = None, page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100), user: dict = Depends(require_admin)):
    filter_q = {"status": status} if status else {}
    result = get_page("order", filter_q, page=page, limit=limit, sort=[("created_at", -1)])
    for order in result["items"]:
        order["customer_info"] = _customer_info(order)
    return _page_response(result, "orders")


@app.get("/orders/{order_id}")
def get_order(order_id: str, user: dict = Depends(get_current_user)):
    order = get_document_by_id("order", order_id)
    if not order or order.get("user_id") != user["_id"]:
        raise NotFoundError("Order not found")
    return order


@app.put("/orders/{order_id}/cancel")
def cancel_order(order_id: str, request: Request, user: dict = Depends(get_current_user)):
    order = cancel_own_order(order_id, user["_id"])
    log_activity(user["_id"], "cancel", "order", order_id, {}, request)
    return order


@app.put("/orders/{order_id}/status")
def set_order_status(order_id: str, payload: OrderStatusUpdate, request: Request, user: dict = Depends(require_admin)):
    before, order = update_status(order_id, payload.status, payload.payment_status)
    log_activity(user["_id"], "update", "order", order_id, {
        "old_status": before["status"],
        "new_status": order["status"],
        "old_payment_status": before["payment_status"],
        "new_payment_status": order["payment_status"],
    }, request)
    order["customer_info"] = _customer_info(order)
    return order


# ===================== Messages =====================
class MessageRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(..., pattern=r"^\d{10,12}$")
    message: str = Field(..., min_length=1, max_length=500)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        return _normalize_email(v, max_length=100)


@app.post("/messages", status_code=201)
def send_message(payload: MessageRequest, user: dict = Depends(get_current_user)):
    create_document("message", Message(user_id=user["_id"], **payload.model_dump()))
    return {"message": "Message sent successfully"}


@app.get("/messages")
def list_messages(is_read: Optional[bool] = None, page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100), user: dict = Depends(require_admin)):
    filter_q = {"is_read": is_read} if is_read is not None else {}
    result = get_page("message", filter_q, page=page, limit=limit, sort=[("created_at", -1)])
    return _page_response(result, "messages")


@app.put("/messages/{message_id}/read")
def mark_message_read(message_id: str, request: Request, user: dict = Depends(require_admin)):
    if not update_document("message", message_id, {"is_read": True}):
        raise NotFoundError("Message not found")
    log_activity(user["_id"], "update", "message", message_id, {"is_read": True}, request)
    return get_document_by_id("message", message_id)


@app.delete("/messages/{message_id}")
def delete_message(message_id: str, request: Request, user: dict = Depends(require_admin)):
    if not delete_document("message", message_id):
        raise NotFoundError("Message not found")
    log_activity(user["_id"], "delete", "message", message_id, {}, request)
    return {"message": "Message deleted successfully"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
