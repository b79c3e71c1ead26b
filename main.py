import logging
import os
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from bson.errors import InvalidId
from bson.objectid import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field

import mailer
import payments
from database import db, create_document, get_documents
from schemas import (
    Address,
    CartItem,
    AddressType,
    Category,
    Contact as ContactSchema,
    Order as OrderSchema,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentResult,
    Product as ProductSchema,
    ProductVariant,
    Role,
    ShippingAddress,
    User as UserSchema,
    WishlistItem,
)
from security import (
    clear_session_cookie,
    create_token,
    get_current_user,
    hash_password,
    require_admin,
    set_session_cookie,
    verify_password,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Flame & Crumble Store API")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------- Config -----------------------
CURRENCY = os.getenv("CURRENCY", "INR")
SHIPPING_FLAT_RATE = float(os.getenv("SHIPPING_FLAT_RATE", "5.00"))
FREE_SHIPPING_THRESHOLD = float(os.getenv("FREE_SHIPPING_THRESHOLD")) if os.getenv("FREE_SHIPPING_THRESHOLD") else None
TAX_RATE = float(os.getenv("TAX_RATE", "0.05"))
LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", "5"))
MIN_PASSWORD_LENGTH = 7
VERIFICATION_CODE_TTL_MINUTES = int(os.getenv("VERIFICATION_CODE_TTL_MINUTES", "15"))
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@flameandcrumble.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin1234")

# Admin-driven order lifecycle. Payment verification moves pending -> processing.
ORDER_TRANSITIONS = {
    "pending": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
}

PRIVATE_USER_FIELDS = ("password_hash", "verification_code", "verification_expires_at")


# ----------------------- Utils -----------------------
def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Mongo hands datetimes back naive, in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid ID format")


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    # convert datetimes
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc


def public_user(user: dict) -> dict:
    suser = serialize_doc(user)
    for field in PRIVATE_USER_FIELDS:
        suser.pop(field, None)
    return suser


def get_product_or_404(product_id: str) -> dict:
    product = db["product"].find_one({"_id": to_object_id(product_id)})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def has_variant(product: dict, variant: str) -> bool:
    return any(v.get("name") == variant for v in product.get("variants", []))


def variant_of(product: dict, variant: Optional[str]) -> Optional[dict]:
    if variant is None:
        return None
    for v in product.get("variants", []):
        if v.get("name") == variant:
            return v
    raise HTTPException(status_code=400, detail=f"Unknown variant '{variant}' for {product['name']}")


def unit_price(product: dict, variant: Optional[str] = None) -> float:
    v = variant_of(product, variant)
    if v is not None and v.get("price") is not None:
        return v["price"]
    return product["price"]


def available_stock(product: dict, variant: Optional[str] = None) -> int:
    v = variant_of(product, variant)
    if v is not None and v.get("stock") is not None:
        return v["stock"]
    return product.get("stock", 0)


def ensure_in_stock(product: dict, quantity: int, variant: Optional[str] = None) -> None:
    stock = available_stock(product, variant)
    if quantity > stock:
        raise HTTPException(status_code=400, detail=f"Only {stock} of {product['name']} left in stock")


def compute_totals(items: List[OrderItem]) -> dict:
    """Order money fields. total_amount is always subtotal + shipping + tax."""
    subtotal = round(sum(i.price * i.quantity for i in items), 2)
    if FREE_SHIPPING_THRESHOLD is not None and subtotal >= FREE_SHIPPING_THRESHOLD:
        shipping_price = 0.0
    else:
        shipping_price = round(SHIPPING_FLAT_RATE, 2)
    tax_price = round(subtotal * TAX_RATE, 2)
    return {
        "subtotal": subtotal,
        "shipping_price": shipping_price,
        "tax_price": tax_price,
        "total_amount": round(subtotal + shipping_price + tax_price, 2),
    }


def line_matches(item: dict, product_id: str, variant: Optional[str]) -> bool:
    return item.get("product_id") == product_id and (variant is None or item.get("variant") == variant)


def find_order_for(order_id: str, user: dict) -> dict:
    order = db["order"].find_one({"_id": to_object_id(order_id)})
    # Other users' orders are reported as missing rather than forbidden.
    if not order or (order.get("user_id") != str(user["_id"]) and user.get("role") != "admin"):
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ----------------------- Models -----------------------
class RegisterBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str
    phone: Optional[str] = None


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdateBody(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None


class PasswordChangeBody(BaseModel):
    old_password: str
    new_password: str


class VerifyEmailBody(BaseModel):
    email: EmailStr
    code: str


class ResendVerificationBody(BaseModel):
    email: EmailStr


class ProductCreateBody(ProductSchema):
    pass


class ProductUpdateBody(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[Category] = None
    image: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    is_new: Optional[bool] = None
    bestseller: Optional[bool] = None
    variants: Optional[List[ProductVariant]] = None


class CartAddBody(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    variant: Optional[str] = None


class CartUpdateBody(BaseModel):
    product_id: str
    quantity: int
    variant: Optional[str] = None


class CartQuantityBody(BaseModel):
    quantity: int


class WishlistAddBody(BaseModel):
    product_id: str
    variant: Optional[str] = None


class AddressBody(BaseModel):
    type: AddressType = "home"
    full_name: Optional[str] = None
    phone: Optional[str] = None
    line1: str
    line2: Optional[str] = None
    city: str
    state: str
    zip: str
    country: str = "India"
    is_default: bool = False


class OrderLineBody(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    variant: Optional[str] = None


class OrderCreateBody(BaseModel):
    items: Optional[List[OrderLineBody]] = None
    shipping_address: Optional[ShippingAddress] = None
    address_id: Optional[str] = None
    payment_method: PaymentMethod = "razorpay"


class PaymentVerificationBody(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class RoleUpdateBody(BaseModel):
    role: Role


class OrderStatusBody(BaseModel):
    status: OrderStatus


class ContactBody(BaseModel):
    name: str
    email: EmailStr
    subject: Optional[str] = None
    message: str = Field(..., min_length=1)


class CorporateInquiryBody(BaseModel):
    company_name: str
    email: EmailStr
    message: str = Field(..., min_length=1)


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Flame & Crumble API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
def issue_verification_code(email: str) -> bool:
    code = mailer.generate_verification_code()
    expires_at = now_utc() + timedelta(minutes=VERIFICATION_CODE_TTL_MINUTES)
    db["user"].update_one(
        {"email": email},
        {"$set": {"verification_code": code, "verification_expires_at": expires_at, "updated_at": now_utc()}},
    )
    return mailer.send_verification_email(email, code, VERIFICATION_CODE_TTL_MINUTES)


@app.post("/api/auth/register", status_code=201)
def register(body: RegisterBody):
    email = body.email.lower()
    if len(body.password.strip()) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=422, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=409, detail="User already exists")
    user = UserSchema(
        name=body.name.strip(),
        email=email,
        password_hash=hash_password(body.password),
        phone=body.phone,
        role="user",
    )
    user_id = create_document("user", user)
    logger.info("Registered user %s", user_id)
    if not issue_verification_code(email):
        logger.warning("Verification code for user %s was not delivered", user_id)
    doc = db["user"].find_one({"_id": ObjectId(user_id)})
    return {"message": "User created", "user": public_user(doc)}


@app.post("/api/auth/login")
def login(body: LoginBody, response: Response):
    user = db["user"].find_one({"email": body.email.lower()})
    if not user or not verify_password(body.password, user.get("password_hash")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_token(user)
    set_session_cookie(response, token)
    return {"message": "Login successful", "token": token, "user": public_user(user)}


@app.post("/api/auth/logout")
def logout(response: Response):
    clear_session_cookie(response)
    return {"message": "Logged out successfully"}


@app.get("/api/auth/status")
def auth_status(user=Depends(get_current_user)):
    return {"authenticated": True, "user": public_user(user)}


@app.get("/api/auth/me")
def me(user=Depends(get_current_user)):
    return public_user(user)


@app.put("/api/auth/me")
def update_me(body: ProfileUpdateBody, user=Depends(get_current_user)):
    update = body.model_dump(exclude_none=True)
    if update:
        update["updated_at"] = now_utc()
        db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    return public_user(db["user"].find_one({"_id": user["_id"]}))


@app.put("/api/auth/password")
def change_password(body: PasswordChangeBody, user=Depends(get_current_user)):
    if not verify_password(body.old_password, user.get("password_hash")):
        raise HTTPException(status_code=400, detail="Old password incorrect")
    if len(body.new_password.strip()) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=422, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(body.new_password), "updated_at": now_utc()}},
    )
    return {"message": "Password updated"}


@app.post("/api/auth/verify-email")
def verify_email(body: VerifyEmailBody):
    user = db["user"].find_one({"email": body.email.lower()})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if user.get("is_verified"):
        return {"message": "Email already verified"}
    expires_at = as_utc(user.get("verification_expires_at"))
    if (
        not user.get("verification_code")
        or user["verification_code"] != body.code.strip()
        or expires_at is None
        or expires_at < now_utc()
    ):
        raise HTTPException(status_code=400, detail="Invalid or expired verification code")
    db["user"].update_one(
        {"_id": user["_id"]},
        {
            "$set": {"is_verified": True, "updated_at": now_utc()},
            "$unset": {"verification_code": "", "verification_expires_at": ""},
        },
    )
    return {"message": "Email verified successfully"}


@app.post("/api/auth/resend-verification")
def resend_verification(body: ResendVerificationBody):
    email = body.email.lower()
    user = db["user"].find_one({"email": email})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if user.get("is_verified"):
        raise HTTPException(status_code=400, detail="Email already verified")
    if not issue_verification_code(email):
        raise HTTPException(status_code=502, detail="Failed to send verification email")
    return {"message": "Verification code sent"}


# ----------------------- Products -----------------------
@app.get("/api/products")
def list_products(
    category: Optional[str] = None,
    q: Optional[str] = None,
    sort: Optional[str] = None,
    stock: Optional[bool] = None,
    new_arrivals: Optional[bool] = None,
    bestseller: Optional[bool] = None,
):
    filt = {}
    if category and category != "all":
        filt["category"] = category
    if q:
        filt["name"] = {"$regex": re.escape(q), "$options": "i"}
    if stock:
        filt["stock"] = {"$gt": 0}
    if new_arrivals:
        filt["is_new"] = True
    if bestseller:
        filt["bestseller"] = True

    if sort == "price-asc":
        order_by = [("price", 1)]
    elif sort == "price-desc":
        order_by = [("price", -1)]
    else:
        order_by = [("created_at", -1)]
    items = db["product"].find(filt).sort(order_by)
    return [serialize_doc(i) for i in items]


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    return serialize_doc(get_product_or_404(product_id))


@app.get("/api/admin/products")
def admin_list_products(admin=Depends(require_admin)):
    return [serialize_doc(p) for p in get_documents("product")]


@app.post("/api/products", status_code=201)
@app.post("/api/admin/products", status_code=201)
def create_product(body: ProductCreateBody, admin=Depends(require_admin)):
    pid = create_document("product", body)
    logger.info("Product %s created by %s", pid, admin["email"])
    return serialize_doc(db["product"].find_one({"_id": ObjectId(pid)}))


@app.put("/api/products/{product_id}")
@app.put("/api/admin/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, admin=Depends(require_admin)):
    update = body.model_dump(exclude_none=True)
    update["updated_at"] = now_utc()
    oid = to_object_id(product_id)
    res = db["product"].update_one({"_id": oid}, {"$set": update})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(db["product"].find_one({"_id": oid}))


@app.delete("/api/products/{product_id}")
@app.delete("/api/admin/products/{product_id}")
def delete_product(product_id: str, admin=Depends(require_admin)):
    res = db["product"].delete_one({"_id": to_object_id(product_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("Product %s deleted by %s", product_id, admin["email"])
    return {"message": "Product deleted"}


# ----------------------- Cart -----------------------
def load_cart_items(user: dict) -> list:
    cart = db["cart"].find_one({"user_id": str(user["_id"])})
    return cart.get("items", []) if cart else []


def save_cart_items(user: dict, items: list) -> None:
    db["cart"].update_one(
        {"user_id": str(user["_id"])},
        {"$set": {"items": items, "updated_at": now_utc()}, "$setOnInsert": {"created_at": now_utc()}},
        upsert=True,
    )


@app.get("/api/cart")
def get_cart(user=Depends(get_current_user)):
    items = load_cart_items(user)
    ids = [to_object_id(i["product_id"]) for i in items]
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}})} if ids else {}

    lines = []
    subtotal = 0.0
    for item in items:
        product = products.get(item["product_id"])
        line = {**item, "product": serialize_doc(product) if product else None, "line_total": 0.0}
        # Lines whose product or variant was removed stay visible but cost nothing.
        if product and (item.get("variant") is None or has_variant(product, item["variant"])):
            line["line_total"] = round(unit_price(product, item.get("variant")) * item["quantity"], 2)
            subtotal += line["line_total"]
        lines.append(line)
    return {"items": lines, "subtotal": round(subtotal, 2)}


@app.post("/api/cart")
def add_to_cart(body: CartAddBody, user=Depends(get_current_user)):
    product = get_product_or_404(body.product_id)
    items = load_cart_items(user)
    existing = next(
        (i for i in items if i["product_id"] == body.product_id and i.get("variant") == body.variant),
        None,
    )
    quantity = body.quantity + (existing["quantity"] if existing else 0)
    ensure_in_stock(product, quantity, body.variant)
    if existing:
        existing["quantity"] = quantity
    else:
        items.append(CartItem(product_id=body.product_id, quantity=body.quantity, variant=body.variant).model_dump())
    save_cart_items(user, items)
    return {"message": "Item added to cart"}


def set_cart_quantity(user: dict, product_id: str, quantity: int, variant: Optional[str] = None) -> dict:
    items = load_cart_items(user)
    item = next((i for i in items if line_matches(i, product_id, variant)), None)
    if item is None:
        raise HTTPException(status_code=404, detail="Item not found in cart")
    if quantity <= 0:
        items.remove(item)
    else:
        ensure_in_stock(get_product_or_404(product_id), quantity, item.get("variant"))
        item["quantity"] = quantity
    save_cart_items(user, items)
    return {"message": "Cart updated"}


@app.put("/api/cart")
def update_cart(body: CartUpdateBody, user=Depends(get_current_user)):
    return set_cart_quantity(user, body.product_id, body.quantity, body.variant)


@app.patch("/api/cart/{product_id}")
def update_cart_item(product_id: str, body: CartQuantityBody, variant: Optional[str] = None, user=Depends(get_current_user)):
    return set_cart_quantity(user, product_id, body.quantity, variant)


@app.delete("/api/cart/{product_id}")
def remove_from_cart(product_id: str, variant: Optional[str] = None, user=Depends(get_current_user)):
    items = [i for i in load_cart_items(user) if not line_matches(i, product_id, variant)]
    save_cart_items(user, items)
    return {"message": "Item removed from cart"}


@app.delete("/api/cart")
def clear_cart(user=Depends(get_current_user)):
    save_cart_items(user, [])
    return {"message": "Cart cleared"}


# ----------------------- Wishlist -----------------------
@app.get("/api/wishlist")
def get_wishlist(user=Depends(get_current_user)):
    wishlist = db["wishlist"].find_one({"user_id": str(user["_id"])})
    return wishlist.get("items", []) if wishlist else []


@app.post("/api/wishlist")
def add_to_wishlist(body: WishlistAddBody, user=Depends(get_current_user)):
    product = get_product_or_404(body.product_id)
    user_id = str(user["_id"])
    wishlist = db["wishlist"].find_one({"user_id": user_id})
    if wishlist and any(i["product_id"] == body.product_id for i in wishlist.get("items", [])):
        raise HTTPException(status_code=400, detail="Item already in wishlist")
    item = WishlistItem(
        product_id=body.product_id,
        name=product["name"],
        price=unit_price(product, body.variant),
        image=product.get("image"),
        variant=body.variant,
        added_at=now_utc(),
    ).model_dump()
    if wishlist is None:
        create_document("wishlist", {"user_id": user_id, "items": [item]})
    else:
        db["wishlist"].update_one({"_id": wishlist["_id"]}, {"$push": {"items": item}, "$set": {"updated_at": now_utc()}})
    return {"message": "Item added to wishlist"}


@app.delete("/api/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, user=Depends(get_current_user)):
    wishlist = db["wishlist"].find_one({"user_id": str(user["_id"])})
    if not wishlist:
        raise HTTPException(status_code=404, detail="Wishlist not found")
    items = [i for i in wishlist.get("items", []) if i["product_id"] != product_id]
    db["wishlist"].update_one({"_id": wishlist["_id"]}, {"$set": {"items": items, "updated_at": now_utc()}})
    return {"message": "Item removed from wishlist"}


# ----------------------- Addresses -----------------------
def save_addresses(user: dict, addresses: list) -> None:
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"addresses": addresses, "updated_at": now_utc()}})


def find_address(addresses: list, address_id: str) -> dict:
    address = next((a for a in addresses if a.get("id") == address_id), None)
    if address is None:
        raise HTTPException(status_code=404, detail="Address not found")
    return address


def make_default(addresses: list, address_id: str) -> None:
    for a in addresses:
        a["is_default"] = a.get("id") == address_id


@app.get("/api/addresses")
def list_addresses(user=Depends(get_current_user)):
    return user.get("addresses", [])


@app.post("/api/addresses", status_code=201)
def add_address(body: AddressBody, user=Depends(get_current_user)):
    addresses = user.get("addresses", [])
    address = Address(**body.model_dump()).model_dump()
    addresses.append(address)
    if body.is_default or len(addresses) == 1:
        make_default(addresses, address["id"])
    save_addresses(user, addresses)
    return address


@app.put("/api/addresses/{address_id}")
def update_address(address_id: str, body: AddressBody, user=Depends(get_current_user)):
    addresses = user.get("addresses", [])
    address = find_address(addresses, address_id)
    was_default = address.get("is_default", False)
    address.update(Address(id=address_id, **body.model_dump()).model_dump())
    address["is_default"] = was_default
    if body.is_default:
        make_default(addresses, address_id)
    save_addresses(user, addresses)
    return address


@app.delete("/api/addresses/{address_id}")
def delete_address(address_id: str, user=Depends(get_current_user)):
    addresses = user.get("addresses", [])
    address = find_address(addresses, address_id)
    addresses.remove(address)
    if address.get("is_default") and addresses:
        make_default(addresses, addresses[0]["id"])
    save_addresses(user, addresses)
    return {"message": "Address deleted"}


@app.patch("/api/addresses/{address_id}/set-default")
def set_default_address(address_id: str, user=Depends(get_current_user)):
    addresses = user.get("addresses", [])
    find_address(addresses, address_id)
    make_default(addresses, address_id)
    save_addresses(user, addresses)
    return addresses


# ----------------------- Orders -----------------------
def resolve_shipping_address(body: OrderCreateBody, user: dict) -> ShippingAddress:
    if body.shipping_address is not None:
        return body.shipping_address
    addresses = user.get("addresses", [])
    if body.address_id:
        address = find_address(addresses, body.address_id)
    else:
        address = next((a for a in addresses if a.get("is_default")), None)
        if address is None:
            raise HTTPException(status_code=400, detail="Shipping address is required")
    return ShippingAddress(
        full_name=address.get("full_name") or user["name"],
        phone=address.get("phone") or user.get("phone") or "",
        line1=address["line1"],
        line2=address.get("line2"),
        city=address["city"],
        state=address["state"],
        zip=address["zip"],
        country=address.get("country") or "India",
    )


@app.post("/api/orders", status_code=201)
def create_order(body: OrderCreateBody, user=Depends(get_current_user)):
    from_cart = not body.items
    lines = body.items or [OrderLineBody(**i) for i in load_cart_items(user)]
    if not lines:
        raise HTTPException(status_code=400, detail="Cart is empty")
    shipping_address = resolve_shipping_address(body, user)

    # Repeated product/variant lines are one line for pricing and stock.
    merged = {}
    for line in lines:
        key = (line.product_id, line.variant)
        if key in merged:
            merged[key].quantity += line.quantity
        else:
            merged[key] = line.model_copy()

    items = []
    for line in merged.values():
        product = get_product_or_404(line.product_id)
        ensure_in_stock(product, line.quantity, line.variant)
        items.append(
            OrderItem(
                product_id=line.product_id,
                name=product["name"],
                price=unit_price(product, line.variant),
                quantity=line.quantity,
                image=product.get("image"),
                variant=line.variant,
            )
        )

    order = OrderSchema(
        user_id=str(user["_id"]),
        items=items,
        shipping_address=shipping_address,
        payment_method=body.payment_method,
        currency=CURRENCY,
        **compute_totals(items),
    )
    oid = create_document("order", order)
    if from_cart:
        save_cart_items(user, [])
    logger.info("Order %s placed by %s for %.2f %s", oid, user["_id"], order.total_amount, CURRENCY)
    return serialize_doc(db["order"].find_one({"_id": ObjectId(oid)}))


@app.get("/api/orders")
def list_orders(status: Optional[OrderStatus] = None, user=Depends(get_current_user)):
    filt = {}
    if user.get("role") != "admin":
        filt["user_id"] = str(user["_id"])
    if status:
        filt["status"] = status
    orders = db["order"].find(filt).sort([("created_at", -1)])
    return {"orders": [serialize_doc(o) for o in orders]}


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user)):
    return serialize_doc(find_order_for(order_id, user))


@app.post("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, user=Depends(get_current_user)):
    order = find_order_for(order_id, user)
    if order.get("status") != "pending" or order.get("is_paid"):
        raise HTTPException(status_code=400, detail="Only pending, unpaid orders can be cancelled")
    db["order"].update_one({"_id": order["_id"]}, {"$set": {"status": "cancelled", "updated_at": now_utc()}})
    logger.info("Order %s cancelled by its owner", order_id)
    return serialize_doc(db["order"].find_one({"_id": order["_id"]}))


# ----------------------- Payments -----------------------
@app.post("/api/orders/{order_id}/razorpay-order")
def create_razorpay_order(order_id: str, user=Depends(get_current_user)):
    order = find_order_for(order_id, user)
    if order.get("is_paid"):
        raise HTTPException(status_code=400, detail="Order already paid")
    if order.get("status") == "cancelled":
        raise HTTPException(status_code=400, detail="Order is cancelled")
    if not payments.is_configured():
        raise HTTPException(status_code=503, detail="Payment gateway not configured")

    currency = order.get("currency", CURRENCY)
    try:
        data = payments.create_gateway_order(order["total_amount"], currency, receipt=f"order_{order_id}")
    except payments.PaymentGatewayError:
        raise HTTPException(status_code=502, detail="Payment gateway error")

    db["order"].update_one(
        {"_id": order["_id"]},
        {"$set": {"payment_result.razorpay_order_id": data.get("id"), "updated_at": now_utc()}},
    )
    return {
        "key_id": payments.RAZORPAY_KEY_ID,
        "amount": data.get("amount", payments.to_paise(order["total_amount"])),
        "currency": data.get("currency", currency),
        "razorpay_order_id": data.get("id"),
    }


def apply_payment(order: dict, body: PaymentVerificationBody) -> dict:
    if order.get("is_paid"):
        raise HTTPException(status_code=400, detail="Order already paid")
    if order.get("status") != "pending":
        raise HTTPException(status_code=400, detail=f"Cannot accept payment for a {order.get('status')} order")
    if not payments.is_configured():
        raise HTTPException(status_code=503, detail="Payment gateway not configured")
    expected = (order.get("payment_result") or {}).get("razorpay_order_id")
    if expected and expected != body.razorpay_order_id:
        raise HTTPException(status_code=400, detail="Payment does not belong to this order")
    if not payments.verify_signature(body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature):
        # The order stays pending and unpaid for later resolution.
        logger.warning("Invalid payment signature for order %s", order["_id"])
        raise HTTPException(status_code=400, detail="Invalid payment signature")

    paid_at = now_utc()
    db["order"].update_one(
        {"_id": order["_id"]},
        {
            "$set": {
                "is_paid": True,
                "paid_at": paid_at,
                "status": "processing",
                "payment_result": PaymentResult(**body.model_dump()).model_dump(),
                "updated_at": paid_at,
            }
        },
    )
    logger.info("Payment %s verified for order %s", body.razorpay_payment_id, order["_id"])
    return {
        "message": "Payment verified successfully. Order updated.",
        "order": serialize_doc(db["order"].find_one({"_id": order["_id"]})),
    }


@app.post("/api/orders/{order_id}/verify-payment")
def verify_order_payment(order_id: str, body: PaymentVerificationBody, user=Depends(get_current_user)):
    return apply_payment(find_order_for(order_id, user), body)


@app.post("/api/payments/verify")
def verify_payment(body: PaymentVerificationBody, user=Depends(get_current_user)):
    order = db["order"].find_one({"payment_result.razorpay_order_id": body.razorpay_order_id})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return apply_payment(find_order_for(str(order["_id"]), user), body)


# ----------------------- Contact -----------------------
@app.post("/api/contact", status_code=201)
def submit_contact(body: ContactBody):
    mid = create_document("contact", ContactSchema(kind="contact", **body.model_dump()))
    return {"message": "Message received", "id": mid}


@app.post("/api/contact/corporate", status_code=201)
def submit_corporate_inquiry(body: CorporateInquiryBody):
    mid = create_document("contact", ContactSchema(kind="corporate", **body.model_dump()))
    return {"message": "Inquiry received", "id": mid}


# ----------------------- Admin -----------------------
@app.get("/api/admin/dashboard")
def admin_dashboard(admin=Depends(require_admin)):
    revenue = list(
        db["order"].aggregate([
            {"$match": {"is_paid": True}},
            {"$group": {"_id": None, "total": {"$sum": "$total_amount"}}},
        ])
    )
    low_stock = db["product"].find({"stock": {"$lte": LOW_STOCK_THRESHOLD}}).sort([("stock", 1)])
    return {
        "total_orders": db["order"].count_documents({}),
        "total_revenue": round(revenue[0]["total"], 2) if revenue else 0.0,
        "total_users": db["user"].count_documents({}),
        "products_in_stock": db["product"].count_documents({"stock": {"$gt": 0}}),
        "low_stock": [
            {"id": str(p["_id"]), "name": p["name"], "stock": p.get("stock", 0)} for p in low_stock
        ],
    }


@app.get("/api/admin/users")
def admin_list_users(admin=Depends(require_admin)):
    users = db["user"].find({}).sort([("created_at", -1)])
    return {"users": [public_user(u) for u in users]}


@app.patch("/api/admin/users/{user_id}/role")
def admin_update_role(user_id: str, body: RoleUpdateBody, admin=Depends(require_admin)):
    oid = to_object_id(user_id)
    if oid == admin["_id"] and body.role != "admin":
        raise HTTPException(status_code=400, detail="You cannot remove your own admin role")
    res = db["user"].update_one({"_id": oid}, {"$set": {"role": body.role, "updated_at": now_utc()}})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("User %s role set to %s by %s", user_id, body.role, admin["email"])
    return public_user(db["user"].find_one({"_id": oid}))


@app.delete("/api/admin/users/{user_id}")
def admin_delete_user(user_id: str, admin=Depends(require_admin)):
    oid = to_object_id(user_id)
    if oid == admin["_id"]:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    res = db["user"].delete_one({"_id": oid})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    db["cart"].delete_many({"user_id": user_id})
    db["wishlist"].delete_many({"user_id": user_id})
    logger.info("User %s deleted by %s", user_id, admin["email"])
    return {"message": "User deleted"}


@app.get("/api/admin/orders")
def admin_list_orders(status: Optional[OrderStatus] = None, admin=Depends(require_admin)):
    filt = {"status": status} if status else {}
    orders = db["order"].find(filt).sort([("created_at", -1)])
    return {"orders": [serialize_doc(o) for o in orders]}


@app.patch("/api/admin/orders/{order_id}/status")
def admin_update_order_status(order_id: str, body: OrderStatusBody, admin=Depends(require_admin)):
    oid = to_object_id(order_id)
    order = db["order"].find_one({"_id": oid})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    current = order.get("status", "pending")
    if body.status not in ORDER_TRANSITIONS[current]:
        raise HTTPException(status_code=400, detail=f"Cannot change order status from {current} to {body.status}")

    update = {"status": body.status, "updated_at": now_utc()}
    if body.status == "delivered":
        update["is_delivered"] = True
        update["delivered_at"] = now_utc()
    db["order"].update_one({"_id": oid}, {"$set": update})
    logger.info("Order %s moved %s -> %s by %s", order_id, current, body.status, admin["email"])
    return serialize_doc(db["order"].find_one({"_id": oid}))


@app.get("/api/admin/messages")
def admin_list_messages(admin=Depends(require_admin)):
    messages = db["contact"].find({}).sort([("created_at", -1)])
    return [serialize_doc(m) for m in messages]


# ----------------------- Seed Demo Data -----------------------
DEMO_PRODUCTS = [
    {
        "name": "Vanilla Dream Candle",
        "description": "Hand-poured soy wax with Madagascar vanilla.",
        "price": 29.99,
        "category": "candles",
        "image": "https://images.unsplash.com/photo-1603006905003-be475563bc59",
        "stock": 40,
        "bestseller": True,
        "variants": [{"name": "Small", "price": 19.99, "stock": 25}, {"name": "Large", "price": 39.99, "stock": 15}],
    },
    {
        "name": "Cedar & Smoke Candle",
        "description": "Woody cedar notes with a whisper of campfire.",
        "price": 34.5,
        "category": "candles",
        "image": "https://images.unsplash.com/photo-1602874801007-bd458bb1b8b6",
        "stock": 18,
        "is_new": True,
    },
    {
        "name": "Brown Butter Chocolate Chip Cookies",
        "description": "A box of twelve, baked the morning they ship.",
        "price": 14.0,
        "category": "cookies",
        "image": "https://images.unsplash.com/photo-1499636136210-6f4ee915583e",
        "stock": 60,
        "bestseller": True,
    },
    {
        "name": "Oatmeal Raisin Cookies",
        "description": "Chewy oats, plump raisins and a hint of cinnamon.",
        "price": 12.0,
        "category": "cookies",
        "image": "https://images.unsplash.com/photo-1558961363-fa8fdf82db35",
        "stock": 4,
    },
    {
        "name": "Sea Salt Dark Chocolate Bar",
        "description": "70% cacao finished with flaky sea salt.",
        "price": 8.5,
        "category": "chocolates",
        "image": "https://images.unsplash.com/photo-1548907040-4baa42d10919",
        "stock": 80,
        "is_new": True,
    },
    {
        "name": "Assorted Truffle Box",
        "description": "Sixteen hand-rolled truffles in seasonal flavours.",
        "price": 32.0,
        "category": "chocolates",
        "image": "https://images.unsplash.com/photo-1511381939415-e44015466834",
        "stock": 20,
        "bestseller": True,
    },
]


@app.post("/seed")
def seed():
    seeded_products = 0
    if db["product"].count_documents({}) == 0:
        for p in DEMO_PRODUCTS:
            create_document("product", ProductSchema(**p))
            seeded_products += 1
    # create admin user if none
    if db["user"].count_documents({"role": "admin"}) == 0:
        admin = UserSchema(
            name="Admin",
            email=ADMIN_EMAIL,
            password_hash=hash_password(ADMIN_PASSWORD),
            role="admin",
            is_verified=True,
        )
        create_document("user", admin)
        logger.info("Seeded admin account %s", ADMIN_EMAIL)
    return {"seeded": seeded_products > 0, "products": db["product"].count_documents({})}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
