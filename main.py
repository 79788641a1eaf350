import logging
import os
from datetime import timedelta
from http import HTTPStatus
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from starlette.exceptions import HTTPException as StarletteHTTPException

import catalog
from checkout import CheckoutError, place_order, price_cart
from database import (
    ORDERS,
    PRODUCTS,
    USERS,
    JsonStore,
    StorageError,
    db,
    find_by_id,
    generate_id,
    index_of,
    parse_timestamp,
    timestamp,
)
from schemas import (
    ORDER_STATUSES,
    AddCartRequest,
    Address,
    CheckoutRequest,
    LoginRequest,
    PasswordChangeRequest,
    Product as ProductSchema,
    ProductCreateRequest,
    ProductUpdateRequest,
    ProfileUpdateRequest,
    RegisterRequest,
    StatusUpdateRequest,
    UpdateCartRequest,
    User as UserSchema,
)
from sessions import (
    CartError,
    Session,
    SessionStore,
    decode_session_token,
    encode_session_token,
)

# ----------------------------------------------------------------------------
# Configuration
# ----------------------------------------------------------------------------

SESSION_SECRET = os.getenv("SESSION_SECRET", "dev-session-secret-change-me-in-production")
SESSION_COOKIE = os.getenv("SESSION_COOKIE", "session")
SESSION_TTL_MINUTES = int(os.getenv("SESSION_TTL_MINUTES", 60 * 24))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
SEED_PRODUCTS = os.getenv("SEED_PRODUCTS", "1").lower() not in ("0", "false", "no")
MIN_PASSWORD_LENGTH = 6

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)
session_store = SessionStore(ttl_seconds=SESSION_TTL_MINUTES * 60)

app = FastAPI(title="Shop API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------------------------------------------------------------
# Error handling
# ----------------------------------------------------------------------------

def error_body(error: str, message: Any) -> Dict[str, Any]:
    return {"error": error, "message": message}


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        body = exc.detail
    else:
        body = error_body(HTTPStatus(exc.status_code).phrase, exc.detail)
    return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if any(tuple(err.get("loc", ())) == ("body", "email") for err in errors):
        return JSONResponse(
            error_body("Invalid email", "Please provide a valid email address"),
            status_code=400,
        )
    problems = []
    for err in errors:
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else err.get("msg"))
    return JSONResponse(error_body("Validation error", "; ".join(problems)), status_code=400)


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    return JSONResponse(error_body(exc.error, exc.message), status_code=400)


@app.exception_handler(CartError)
async def cart_error_handler(request: Request, exc: CartError):
    return JSONResponse(error_body(exc.error, exc.message), status_code=exc.status_code)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(error_body("Server error", "Failed to save changes"), status_code=500)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(error_body("Server error", "An unexpected error occurred"), status_code=500)


# ----------------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------------

def get_store() -> JsonStore:
    return db


def get_sessions() -> SessionStore:
    return session_store


def set_session_cookie(response: Response, session: Session) -> str:
    token = encode_session_token(session.id, SESSION_SECRET, timedelta(minutes=SESSION_TTL_MINUTES))
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=SESSION_TTL_MINUTES * 60,
        httponly=True,
        samesite="lax",
    )
    return token


def get_session(
    request: Request,
    response: Response,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    sessions: SessionStore = Depends(get_sessions),
) -> Session:
    token = credentials.credentials if credentials else request.cookies.get(SESSION_COOKIE)
    session = sessions.get(decode_session_token(token, SESSION_SECRET))
    if session is None:
        session = sessions.create()
        set_session_cookie(response, session)
    return session


def get_current_session(session: Session = Depends(get_session)) -> Session:
    if not session.is_authenticated:
        raise HTTPException(
            status_code=401,
            detail=error_body("Authentication required", "Please login to access this resource"),
        )
    return session


def get_admin_session(session: Session = Depends(get_current_session)) -> Session:
    if not session.is_admin:
        raise HTTPException(status_code=403, detail=error_body("Access denied", "Admin privileges required"))
    return session


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        return False


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(user)
    doc.pop("password", None)
    return doc


def bad_request(error: str, message: str) -> HTTPException:
    return HTTPException(status_code=400, detail=error_body(error, message))


# ----------------------------------------------------------------------------
# Auth Endpoints
# ----------------------------------------------------------------------------

@app.post("/api/auth/register", status_code=201)
def register(
    body: RegisterRequest,
    response: Response,
    session: Session = Depends(get_session),
    store: JsonStore = Depends(get_store),
):
    if not body.name.strip() or not body.password:
        raise bad_request("Missing fields", "Name, email, and password are required")
    if len(body.password) < MIN_PASSWORD_LENGTH:
        raise bad_request("Weak password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if body.password != body.confirmPassword:
        raise bad_request("Password mismatch", "Passwords do not match")

    email = body.email.strip().lower()
    password_hash = hash_password(body.password)
    with store.lock:
        users = store.read(USERS)
        if any(u.get("email", "").lower() == email for u in users):
            raise HTTPException(
                status_code=409,
                detail=error_body("User exists", "An account with this email already exists"),
            )
        now = timestamp()
        user = UserSchema(
            id=generate_id(),
            name=body.name.strip(),
            email=email,
            password=password_hash,
            # The first account to register administers the shop.
            role="admin" if not users else "customer",
            createdAt=now,
            updatedAt=now,
        ).model_dump()
        users.append(user)
        store.save(USERS, users)

    session.login(user)
    token = set_session_cookie(response, session)
    logger.info("Registered user %s (%s)", user["id"], user["role"])
    return {
        "message": "Registration successful",
        "user": session.user.model_dump(),
        "access_token": token,
        "token_type": "bearer",
    }


@app.post("/api/auth/login")
def login(
    body: LoginRequest,
    response: Response,
    session: Session = Depends(get_session),
    store: JsonStore = Depends(get_store),
):
    if not body.email or not body.password:
        raise bad_request("Missing fields", "Email and password are required")
    email = body.email.strip().lower()
    user = next((u for u in store.read(USERS) if u.get("email", "").lower() == email), None)
    if not user or not verify_password(body.password, user.get("password", "")):
        raise HTTPException(status_code=401, detail=error_body("Invalid credentials", "Invalid email or password"))

    session.login(user)
    token = set_session_cookie(response, session)
    logger.info("User %s logged in", user["id"])
    return {
        "message": "Login successful",
        "user": session.user.model_dump(),
        "access_token": token,
        "token_type": "bearer",
    }


@app.post("/api/auth/logout")
def logout(
    response: Response,
    session: Session = Depends(get_session),
    sessions: SessionStore = Depends(get_sessions),
):
    sessions.destroy(session.id)
    response.delete_cookie(SESSION_COOKIE)
    return {"message": "Logout successful"}


@app.get("/api/auth/me")
def me(session: Session = Depends(get_session)):
    if not session.is_authenticated:
        raise HTTPException(status_code=401, detail=error_body("Not authenticated", "Please login"))
    return {"user": session.user.model_dump(), "cartCount": len(session.cart)}


# ----------------------------------------------------------------------------
# User Profile
# ----------------------------------------------------------------------------

@app.get("/api/users/profile")
def get_profile(session: Session = Depends(get_current_session), store: JsonStore = Depends(get_store)):
    user = find_by_id(store.read(USERS), session.user.id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": public_user(user)}


@app.put("/api/users/profile")
def update_profile(
    body: ProfileUpdateRequest,
    session: Session = Depends(get_current_session),
    store: JsonStore = Depends(get_store),
):
    with store.lock:
        users = store.read(USERS)
        idx = index_of(users, session.user.id)
        if idx == -1:
            raise HTTPException(status_code=404, detail="User not found")
        user = users[idx]

        if body.email:
            email = body.email.strip().lower()
            if email != user["email"] and any(
                u.get("email", "").lower() == email and u["id"] != user["id"] for u in users
            ):
                raise HTTPException(
                    status_code=409,
                    detail=error_body("Email exists", "This email is already in use"),
                )
            user["email"] = email
        if body.name:
            user["name"] = body.name.strip()
        if body.phone is not None:
            user["phone"] = body.phone.strip()
        if body.address:
            user["address"] = {**(user.get("address") or Address().model_dump()), **body.address}
        user["updatedAt"] = timestamp()
        store.save(USERS, users)

    session.user.name = user["name"]
    session.user.email = user["email"]
    return {"message": "Profile updated successfully", "user": public_user(user)}


@app.put("/api/users/password")
def change_password(
    body: PasswordChangeRequest,
    session: Session = Depends(get_current_session),
    store: JsonStore = Depends(get_store),
):
    if not body.currentPassword or not body.newPassword or not body.confirmPassword:
        raise bad_request("Missing fields", "All password fields are required")
    if len(body.newPassword) < MIN_PASSWORD_LENGTH:
        raise bad_request("Weak password", f"New password must be at least {MIN_PASSWORD_LENGTH} characters")
    if body.newPassword != body.confirmPassword:
        raise bad_request("Password mismatch", "New passwords do not match")

    with store.lock:
        users = store.read(USERS)
        idx = index_of(users, session.user.id)
        if idx == -1:
            raise HTTPException(status_code=404, detail="User not found")
        if not verify_password(body.currentPassword, users[idx].get("password", "")):
            raise HTTPException(
                status_code=401,
                detail=error_body("Invalid password", "Current password is incorrect"),
            )
        users[idx]["password"] = hash_password(body.newPassword)
        users[idx]["updatedAt"] = timestamp()
        store.save(USERS, users)
    return {"message": "Password changed successfully"}


# ----------------------------------------------------------------------------
# Product Endpoints
# ----------------------------------------------------------------------------

@app.get("/api/products")
def list_products(
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    subcategory: Optional[str] = Query(None),
    brand: Optional[str] = Query(None),
    minPrice: Optional[float] = Query(None),
    maxPrice: Optional[float] = Query(None),
    featured: Optional[bool] = Query(None),
    sort: Optional[str] = Query(None, description="price-asc|price-desc|name-asc|name-desc|rating|newest"),
    page: int = Query(1, ge=1),
    limit: int = Query(catalog.DEFAULT_PAGE_SIZE, ge=1),
    store: JsonStore = Depends(get_store),
):
    query = catalog.ProductQuery(
        search=search,
        category=category,
        subcategory=subcategory,
        brand=brand,
        minPrice=minPrice,
        maxPrice=maxPrice,
        featured=featured,
        sort=sort,
        page=page,
        limit=limit,
    )
    return catalog.search(store.read(PRODUCTS), query)


@app.get("/api/products/categories")
def product_categories(store: JsonStore = Depends(get_store)):
    return catalog.facets(store.read(PRODUCTS))


@app.get("/api/products/{product_id}")
def get_product(product_id: str, store: JsonStore = Depends(get_store)):
    products = store.read(PRODUCTS)
    product = find_by_id(products, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"product": product, "relatedProducts": catalog.related(products, product)}


@app.post("/api/products", status_code=201)
def create_product(
    body: ProductCreateRequest,
    session: Session = Depends(get_admin_session),
    store: JsonStore = Depends(get_store),
):
    if not body.name or not body.description or body.price is None or not body.category:
        raise bad_request("Missing fields", "Name, description, price, and category are required")
    product = ProductSchema(
        id=generate_id(),
        name=body.name.strip(),
        description=body.description.strip(),
        price=body.price,
        originalPrice=body.originalPrice if body.originalPrice is not None else body.price,
        category=body.category.strip(),
        subcategory=(body.subcategory or "").strip(),
        brand=(body.brand or "").strip(),
        images=body.images,
        stock=body.stock,
        featured=body.featured,
        tags=body.tags,
        specifications=body.specifications,
        createdAt=timestamp(),
    ).model_dump(exclude_none=True)
    with store.lock:
        products = store.read(PRODUCTS)
        products.append(product)
        store.save(PRODUCTS, products)
    logger.info("Product %s created by %s", product["id"], session.user.id)
    return {"message": "Product created successfully", "product": product}


@app.put("/api/products/{product_id}")
def update_product(
    product_id: str,
    body: ProductUpdateRequest,
    session: Session = Depends(get_admin_session),
    store: JsonStore = Depends(get_store),
):
    update = body.model_dump(exclude_unset=True)
    update.pop("id", None)
    update.pop("createdAt", None)
    nulls = [name for name in ProductUpdateRequest.model_fields if name in update and update[name] is None]
    if nulls:
        raise bad_request("Invalid fields", f"{', '.join(nulls)} cannot be null")
    with store.lock:
        products = store.read(PRODUCTS)
        idx = index_of(products, product_id)
        if idx == -1:
            raise HTTPException(status_code=404, detail="Product not found")
        products[idx] = {**products[idx], **update, "updatedAt": timestamp()}
        store.save(PRODUCTS, products)
    return {"message": "Product updated successfully", "product": products[idx]}


@app.delete("/api/products/{product_id}")
def delete_product(
    product_id: str,
    session: Session = Depends(get_admin_session),
    store: JsonStore = Depends(get_store),
):
    with store.lock:
        products = store.read(PRODUCTS)
        idx = index_of(products, product_id)
        if idx == -1:
            raise HTTPException(status_code=404, detail="Product not found")
        products.pop(idx)
        store.save(PRODUCTS, products)
    return {"message": "Product deleted successfully"}


# ----------------------------------------------------------------------------
# Cart
# ----------------------------------------------------------------------------

@app.get("/api/cart")
def get_cart(session: Session = Depends(get_session), store: JsonStore = Depends(get_store)):
    return price_cart(session, store.read(PRODUCTS))


@app.post("/api/cart/add")
def add_to_cart(
    body: AddCartRequest,
    session: Session = Depends(get_session),
    store: JsonStore = Depends(get_store),
):
    if not body.productId:
        raise bad_request("Missing product", "Product ID is required")
    product = find_by_id(store.read(PRODUCTS), body.productId)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    session.cart.add(body.productId, body.quantity, product.get("stock", 0))
    return {"message": "Item added to cart", "cartCount": session.cart.count}


@app.put("/api/cart/update")
def update_cart(
    body: UpdateCartRequest,
    session: Session = Depends(get_session),
    store: JsonStore = Depends(get_store),
):
    if not body.productId or body.quantity is None:
        raise bad_request("Missing fields", "Product ID and quantity are required")
    stock = None
    if body.quantity > 0:
        product = find_by_id(store.read(PRODUCTS), body.productId)
        if product:
            stock = product.get("stock", 0)
    session.cart.update(body.productId, body.quantity, stock)
    return {"message": "Cart updated", "cartCount": session.cart.count}


@app.delete("/api/cart/remove/{product_id}")
def remove_from_cart(product_id: str, session: Session = Depends(get_session)):
    session.cart.remove(product_id)
    return {"message": "Item removed from cart", "cartCount": session.cart.count}


@app.delete("/api/cart/clear")
def clear_cart(session: Session = Depends(get_session)):
    session.cart.clear()
    return {"message": "Cart cleared"}


# ----------------------------------------------------------------------------
# Orders (Checkout & Tracking)
# ----------------------------------------------------------------------------

@app.post("/api/orders", status_code=201)
def checkout(
    body: CheckoutRequest,
    session: Session = Depends(get_current_session),
    store: JsonStore = Depends(get_store),
):
    order = place_order(store, session, body.shippingAddress, body.paymentMethod)
    return {
        "message": "Order placed successfully",
        "order": {
            "id": order["id"],
            "orderNumber": order["orderNumber"],
            "total": order["total"],
            "status": order["status"],
        },
    }


@app.get("/api/orders")
def list_orders(
    status: Optional[str] = Query(None),
    session: Session = Depends(get_current_session),
    store: JsonStore = Depends(get_store),
):
    orders = store.read(ORDERS)
    if not session.is_admin:
        orders = [o for o in orders if o.get("userId") == session.user.id]
    orders.sort(key=lambda o: parse_timestamp(o.get("createdAt")), reverse=True)
    if status:
        orders = [o for o in orders if o.get("status") == status]
    return {"orders": orders}


@app.get("/api/orders/{order_id}")
def get_order(
    order_id: str,
    session: Session = Depends(get_current_session),
    store: JsonStore = Depends(get_store),
):
    order = find_by_id(store.read(ORDERS), order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order.get("userId") != session.user.id and not session.is_admin:
        raise HTTPException(status_code=403, detail=error_body("Access denied", "You cannot view this order"))
    return {"order": order}


@app.put("/api/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    body: StatusUpdateRequest,
    session: Session = Depends(get_admin_session),
    store: JsonStore = Depends(get_store),
):
    if body.status not in ORDER_STATUSES:
        raise bad_request("Invalid status", f"Status must be one of: {', '.join(ORDER_STATUSES)}")
    with store.lock:
        orders = store.read(ORDERS)
        idx = index_of(orders, order_id)
        if idx == -1:
            raise HTTPException(status_code=404, detail="Order not found")
        order = orders[idx]
        now = timestamp()
        order["status"] = body.status
        order.setdefault("statusHistory", []).append({
            "status": body.status,
            "timestamp": now,
            "note": body.note or f"Status updated to {body.status}",
        })
        order["updatedAt"] = now
        store.save(ORDERS, orders)
    logger.info("Order %s set to %s by %s", order_id, body.status, session.user.id)
    return {"message": "Order status updated", "order": order}


# ----------------------------------------------------------------------------
# Health
# ----------------------------------------------------------------------------

@app.get("/")
def root():
    return {"message": "Shop API running"}


@app.get("/api/health")
def health(store: JsonStore = Depends(get_store), sessions: SessionStore = Depends(get_sessions)):
    return {
        "backend": "ok",
        "dataDir": store.data_dir,
        "collections": {name: len(store.read(name)) for name in (PRODUCTS, ORDERS, USERS)},
        "sessions": len(sessions),
    }


# ----------------------------------------------------------------------------
# Seed Data (idempotent) and Startup Hook
# ----------------------------------------------------------------------------

SAMPLE_PRODUCTS: List[Dict[str, Any]] = [
    {
        "name": "Studio Over-Ear Headphones",
        "description": "Closed-back Bluetooth headphones with active noise cancellation and a 30-hour battery.",
        "price": 149.99,
        "originalPrice": 199.99,
        "category": "Electronics",
        "subcategory": "Audio",
        "brand": "SoundMax",
        "images": ["/images/products/studio-headphones.jpg"],
        "stock": 50,
        "rating": 4.6,
        "reviews": 128,
        "featured": True,
        "tags": ["audio", "wireless", "headphones"],
        "specifications": {"Battery": "30 hours", "Connectivity": "Bluetooth 5.2"},
    },
    {
        "name": "Pocket Smart Speaker",
        "description": "Palm-sized speaker with a built-in voice assistant and 360-degree sound.",
        "price": 39.99,
        "category": "Electronics",
        "subcategory": "Audio",
        "brand": "SoundMax",
        "images": ["/images/products/pocket-speaker.jpg"],
        "stock": 120,
        "rating": 4.3,
        "reviews": 86,
        "featured": False,
        "tags": ["speaker", "smart"],
        "specifications": {"Power": "15 W"},
    },
    {
        "name": "Commuter Rolltop Pack",
        "description": "Rolltop pack in waxed canvas with a padded 15-inch laptop sleeve.",
        "price": 59.5,
        "category": "Accessories",
        "subcategory": "Bags",
        "brand": "Urbanite",
        "images": ["/images/products/rolltop-pack.jpg"],
        "stock": 55,
        "rating": 4.2,
        "reviews": 40,
        "featured": True,
        "tags": ["bag", "travel"],
        "specifications": {"Capacity": "20 L"},
    },
    {
        "name": "Tempo Road Trainers",
        "description": "Cushioned road trainers with a knit upper, built for daily tempo runs.",
        "price": 74.99,
        "originalPrice": 89.99,
        "category": "Footwear",
        "subcategory": "Sport",
        "brand": "Stride",
        "images": ["/images/products/tempo-trainers.jpg"],
        "stock": 200,
        "rating": 4.4,
        "reviews": 212,
        "featured": False,
        "tags": ["shoes", "sport", "running"],
        "specifications": {"Weight": "240 g"},
    },
]


def seed_data(store: JsonStore) -> int:
    with store.lock:
        if store.read(PRODUCTS):
            return 0
        now = timestamp()
        products = [
            ProductSchema(**{"originalPrice": p["price"], **p}, id=generate_id(), createdAt=now).model_dump(
                exclude_none=True
            )
            for p in SAMPLE_PRODUCTS
        ]
        store.save(PRODUCTS, products)
    logger.info("Seeded %d sample products into %s", len(products), store.data_dir)
    return len(products)


@app.on_event("startup")
def on_startup():
    if not SEED_PRODUCTS:
        return
    try:
        seed_data(get_store())
    except StorageError:
        logger.exception("Seeding sample products failed")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
