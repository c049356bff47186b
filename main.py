import logging
import os
import secrets
from contextlib import asynccontextmanager
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from passlib.context import CryptContext
from pydantic import BaseModel

from database import db, StoreError
from schemas import Cart as CartSchema, CartItem as CartItemSchema, Order as OrderSchema, Product as ProductSchema, User as UserSchema

logger = logging.getLogger(__name__)

# Config
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 10))
SESSION_TOKEN_BYTES = 18  # 24 url-safe characters

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db.init()
    yield


app = FastAPI(title="LuxeStore API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.exception("Storage failure on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Storage unavailable"})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": errors})


# Utilities

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def new_session_token() -> str:
    return secrets.token_urlsafe(SESSION_TOKEN_BYTES)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def find_user_by_email(users: List[UserSchema], email: str) -> Optional[UserSchema]:
    email = email.lower()
    return next((u for u in users if u.email == email), None)


def find_cart(carts: List[CartSchema], user_id: str) -> Optional[CartSchema]:
    return next((c for c in carts if c.user_id == user_id), None)


# Request models
# Fields are optional so a missing value reaches the presence checks below
# and answers 400 with a readable message.

class SignupInput(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class LoginInput(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ResetPasswordInput(BaseModel):
    email: Optional[str] = None
    newPassword: Optional[str] = None


class AddToCartInput(BaseModel):
    productId: Optional[str] = None
    qty: int = 1


class UpdateCartInput(BaseModel):
    productId: Optional[str] = None
    qty: Optional[int] = None


# Dependency to get current user

def get_current_user(x_session_token: Optional[str] = Header(default=None)) -> UserSchema:
    if not x_session_token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    document = db.load()
    # Linear scan; fine for a small user base.
    user = next((u for u in document.users if u.session == x_session_token), None)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


# Routes
@app.get("/")
def read_root():
    return {"message": "LuxeStore API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_file": db.path,
        "exists": db.exists(),
        "collections": {},
    }
    try:
        document = db.load()
        response["database"] = "✅ Available"
        response["collections"] = {
            "users": len(document.users),
            "products": len(document.products),
            "carts": len(document.carts),
            "orders": len(document.orders),
        }
    except StoreError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Auth
# bcrypt runs before db.transaction() so other writers never wait on a hash.
@app.post("/api/auth/signup")
def signup(payload: Optional[SignupInput] = None):
    payload = payload or SignupInput()
    if not payload.email or not payload.password:
        raise HTTPException(status_code=400, detail="Missing email or password")
    password_hash = hash_password(payload.password)
    with db.transaction() as document:
        if find_user_by_email(document.users, payload.email):
            raise HTTPException(status_code=409, detail="User already exists")
        user = UserSchema(
            id=str(ObjectId()),
            email=payload.email.lower(),
            password_hash=password_hash,
            created_at=datetime.now(timezone.utc),
        )
        document.users.append(user)
    logger.info("New user %s", user.id)
    # Never send password hash
    return {"message": "Signup successful", "email": user.email}


@app.post("/api/auth/login")
def login(payload: Optional[LoginInput] = None):
    payload = payload or LoginInput()
    if not payload.email or not payload.password:
        raise HTTPException(status_code=400, detail="Missing credentials")
    user = find_user_by_email(db.load().users, payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        logger.info("Rejected login attempt")
        raise HTTPException(status_code=401, detail="Invalid credentials")
    with db.transaction() as document:
        user = next(u for u in document.users if u.id == user.id)
        # One active session per user; the previous token stops working.
        user.session = new_session_token()
    logger.info("User %s logged in", user.id)
    return {"id": user.id, "email": user.email, "sessionToken": user.session}


@app.post("/api/auth/reset-password")
def reset_password(payload: Optional[ResetPasswordInput] = None):
    payload = payload or ResetPasswordInput()
    if not payload.email or not payload.newPassword:
        raise HTTPException(status_code=400, detail="Missing fields")
    password_hash = hash_password(payload.newPassword)
    with db.transaction() as document:
        user = find_user_by_email(document.users, payload.email)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")
        # The current session token stays valid.
        user.password_hash = password_hash
    logger.info("Password reset for user %s", user.id)
    return {"message": "Password reset successful"}


@app.get("/api/auth/me")
def me(current_user: UserSchema = Depends(get_current_user)):
    return {"id": current_user.id, "email": current_user.email, "createdAt": dump(current_user)["createdAt"]}


# Products
@app.get("/api/products")
def list_products(category: Optional[str] = None):
    products = db.load().products
    if category:
        products = [p for p in products if p.category == category]
    return [dump(p) for p in products]


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    product = next((p for p in db.load().products if p.id == product_id), None)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return dump(product)


# Cart
@app.get("/api/cart")
def get_cart(current_user: UserSchema = Depends(get_current_user)):
    cart = find_cart(db.load().carts, current_user.id)
    if not cart:
        # Not persisted; only shapes the response.
        cart = CartSchema(user_id=current_user.id)
    return dump(cart)


@app.post("/api/cart")
def add_to_cart(payload: Optional[AddToCartInput] = None, current_user: UserSchema = Depends(get_current_user)):
    payload = payload or AddToCartInput()
    if not payload.productId:
        raise HTTPException(status_code=400, detail="Missing productId")
    with db.transaction() as document:
        product: Optional[ProductSchema] = next((p for p in document.products if p.id == payload.productId), None)
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")

        cart = find_cart(document.carts, current_user.id)
        if not cart:
            cart = CartSchema(user_id=current_user.id)
            document.carts.append(cart)

        item = next((i for i in cart.items if i.product_id == product.id), None)
        if item:
            # title/price/image keep the values captured when the line was created
            item.qty += payload.qty
        else:
            item = CartItemSchema(
                product_id=product.id,
                title=product.title,
                price=product.price,
                image=product.image,
                qty=payload.qty,
            )
            cart.items.append(item)
        if item.qty <= 0:
            cart.items = [i for i in cart.items if i.product_id != product.id]
    return {"message": "Added to cart", "cart": dump(cart)}


@app.put("/api/cart")
def update_cart(payload: Optional[UpdateCartInput] = None, current_user: UserSchema = Depends(get_current_user)):
    payload = payload or UpdateCartInput()
    if not payload.productId:
        raise HTTPException(status_code=400, detail="Missing productId")
    if payload.qty is None:
        raise HTTPException(status_code=400, detail="Missing productId or qty")
    with db.transaction() as document:
        cart = find_cart(document.carts, current_user.id)
        if not cart:
            raise HTTPException(status_code=404, detail="Cart not found")
        item = next((i for i in cart.items if i.product_id == payload.productId), None)
        if not item:
            raise HTTPException(status_code=404, detail="Item not found")
        item.qty = payload.qty
        if item.qty <= 0:
            cart.items = [i for i in cart.items if i.product_id != payload.productId]
    return {"message": "Cart updated", "cart": dump(cart)}


@app.delete("/api/cart/{product_id}")
def remove_from_cart(product_id: str, current_user: UserSchema = Depends(get_current_user)):
    with db.transaction() as document:
        cart = find_cart(document.carts, current_user.id)
        if not cart:
            raise HTTPException(status_code=404, detail="Cart not found")
        cart.items = [i for i in cart.items if i.product_id != product_id]
    return {"message": "Item removed", "cart": dump(cart)}


# Checkout
@app.post("/api/checkout")
def checkout(current_user: UserSchema = Depends(get_current_user)):
    with db.transaction() as document:
        cart = find_cart(document.carts, current_user.id)
        if not cart or not cart.items:
            raise HTTPException(status_code=400, detail="Cart empty")
        order = OrderSchema(
            id="order_" + str(ObjectId()),
            user_id=current_user.id,
            items=deepcopy(cart.items),
            total=sum(i.qty * i.price for i in cart.items),
            date=utc_timestamp(),
        )
        document.orders.append(order)
        # The cart record goes away entirely, not just its items.
        document.carts = [c for c in document.carts if c.user_id != current_user.id]
    logger.info("Order %s placed by user %s, total %d", order.id, current_user.id, order.total)
    return {"message": "Order placed successfully", "order": dump(order)}


@app.get("/api/orders")
def list_orders(current_user: UserSchema = Depends(get_current_user)):
    return [dump(o) for o in db.load().orders if o.user_id == current_user.id]


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    port = int(os.getenv("PORT", 4000))
    uvicorn.run(app, host="0.0.0.0", port=port)
