from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pydantic import ValidationError as SchemaValidationError
from pymongo.database import Database

import carts
import catalog
import config
import orders
import storage
import users
from auth import (
    bearer_token,
    blacklist_token,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    require,
)
from database import ensure_indexes, get_db, serialize_doc
from errors import AuthenticationError, NotFoundError, StoreError
from logging_config import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes(get_db())
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handlers

@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid request", "errors": jsonable_encoder(exc.errors(), custom_encoder={Exception: str})},
    )


@app.exception_handler(SchemaValidationError)
async def schema_validation_handler(request: Request, exc: SchemaValidationError):
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid data", "errors": jsonable_encoder(exc.errors(), custom_encoder={Exception: str})},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", method=request.method, path=request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


# Request models

class RegisterInput(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class RefreshInput(BaseModel):
    refresh_token: str


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=1)


class PasswordReset(BaseModel):
    new_password: str = Field(..., min_length=1)


class CartItemInput(BaseModel):
    product_id: str
    quantity: int


class CartQuantityInput(BaseModel):
    quantity: int


class OrderStatusInput(BaseModel):
    status: str


# Health

@app.get("/")
def read_root():
    return {"message": "Storefront API"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["database_name"] = db.name
        response["collections"] = db.list_collection_names()
        response["database"] = "Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        logger.warning("database_check_failed", error=str(e))
        response["database"] = f"Error: {str(e)[:80]}"
    return response


# Auth

@app.post("/auth/register", status_code=201)
def register(payload: RegisterInput, db: Database = Depends(get_db)):
    user = users.register(db, payload.name, payload.email, payload.password)
    return {
        "message": "User registered",
        "user": serialize_doc(user),
        "token": create_access_token(user),
        "token_type": "bearer",
    }


@app.post("/auth/login")
def login(payload: LoginInput, db: Database = Depends(get_db)):
    user = users.authenticate(db, payload.email, payload.password)
    return {
        "message": "Login successful",
        "token": create_access_token(user),
        "refresh_token": create_refresh_token(user),
        "token_type": "bearer",
        "user": serialize_doc(user),
    }


@app.post("/auth/logout")
def logout(token: str = Depends(bearer_token), current_user: dict = Depends(get_current_user),
           db: Database = Depends(get_db)):
    blacklist_token(db, token, decode_token(token))
    return {"message": "Logged out"}


@app.post("/auth/refresh")
def refresh(payload: RefreshInput, db: Database = Depends(get_db)):
    claims = decode_token(payload.refresh_token, token_type="refresh")
    try:
        user = users.get_user(db, claims["sub"])
    except NotFoundError:
        raise AuthenticationError("User not found")
    return {"message": "Access token refreshed", "token": create_access_token(user), "token_type": "bearer"}


# Self-service

@app.get("/user/profile")
def get_profile(current_user: dict = Depends(require("profile", "read"))):
    return {"message": "Profile", "user": current_user}


@app.patch("/user/profile")
def update_profile(
    name: Optional[str] = Form(None),
    email: Optional[EmailStr] = Form(None),
    profile_image: Optional[UploadFile] = File(None),
    current_user: dict = Depends(require("profile", "update")),
    db: Database = Depends(get_db),
):
    image_name = storage.save_upload(profile_image, "users")
    with storage.discard_on_error("users", image_name):
        user = users.update_user(db, current_user["id"], name=name, email=email, profile_image=image_name)
    return {"message": "Profile updated", "user": serialize_doc(user)}


@app.patch("/user/password")
def change_password(payload: PasswordChange, current_user: dict = Depends(require("profile", "update")),
                    db: Database = Depends(get_db)):
    users.change_password(db, current_user["id"], payload.current_password, payload.new_password)
    return {"message": "Password updated"}


@app.delete("/user/delete")
def delete_account(token: str = Depends(bearer_token), current_user: dict = Depends(require("profile", "delete")),
                   db: Database = Depends(get_db)):
    user, image_deleted = users.delete_user(db, current_user["id"])
    blacklist_token(db, token, decode_token(token))
    return _deleted_response("Account deleted", "user", user, image_deleted)


# Admin user management

@app.get("/admin")
def list_users(current_user: dict = Depends(require("users", "read")), db: Database = Depends(get_db)):
    return {"message": "All users", "users": serialize_doc(users.list_users(db))}


@app.get("/admin/{user_id}")
def get_user(user_id: str, current_user: dict = Depends(require("users", "read")), db: Database = Depends(get_db)):
    return {"message": f"User {user_id}", "user": serialize_doc(users.get_user(db, user_id))}


@app.post("/admin/user", status_code=201)
def create_user(
    name: str = Form(...),
    email: EmailStr = Form(...),
    password: str = Form(...),
    role: str = Form("user"),
    profile_image: Optional[UploadFile] = File(None),
    current_user: dict = Depends(require("users", "create")),
    db: Database = Depends(get_db),
):
    image_name = storage.save_upload(profile_image, "users")
    with storage.discard_on_error("users", image_name):
        user = users.create_user(db, name, email, password, role=role, profile_image=image_name)
    return {"message": "User created", "user": serialize_doc(user)}


@app.patch("/admin/user/{user_id}")
def update_user(
    user_id: str,
    name: Optional[str] = Form(None),
    email: Optional[EmailStr] = Form(None),
    role: Optional[str] = Form(None),
    profile_image: Optional[UploadFile] = File(None),
    current_user: dict = Depends(require("users", "update")),
    db: Database = Depends(get_db),
):
    image_name = storage.save_upload(profile_image, "users")
    with storage.discard_on_error("users", image_name):
        user = users.update_user(db, user_id, name=name, email=email, role=role, profile_image=image_name)
    return {"message": "User updated", "user": serialize_doc(user)}


@app.patch("/admin/password/{user_id}")
def reset_password(user_id: str, payload: PasswordReset, current_user: dict = Depends(require("users", "update")),
                   db: Database = Depends(get_db)):
    user = users.reset_password(db, user_id, payload.new_password)
    return {"message": "Password updated", "user": serialize_doc(user)}


@app.delete("/admin/delete/{user_id}")
def delete_user(user_id: str, current_user: dict = Depends(require("users", "delete")),
                db: Database = Depends(get_db)):
    user, image_deleted = users.delete_user(db, user_id)
    return _deleted_response("User deleted", "user", user, image_deleted)


# Products

@app.get("/products")
def list_products(current_user: dict = Depends(require("products", "read")), db: Database = Depends(get_db)):
    return {"message": "All products", "products": serialize_doc(catalog.list_products(db))}


@app.get("/products/{product_id}")
def get_product(product_id: str, current_user: dict = Depends(require("products", "read")),
                db: Database = Depends(get_db)):
    return {"message": f"Product {product_id}", "product": serialize_doc(catalog.get_product(db, product_id))}


@app.post("/products", status_code=201)
def create_product(
    name: str = Form(..., min_length=1),
    price: float = Form(..., ge=0),
    stock: int = Form(0, ge=0),
    description: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    current_user: dict = Depends(require("products", "create")),
    db: Database = Depends(get_db),
):
    image_name = storage.save_upload(image, "products")
    with storage.discard_on_error("products", image_name):
        product = catalog.create_product(db, name, price, stock, description, image_name)
    return {"message": "Product created", "product": serialize_doc(product)}


@app.put("/products/{product_id}")
def update_product(
    product_id: str,
    name: Optional[str] = Form(None),
    price: Optional[float] = Form(None, ge=0),
    stock: Optional[int] = Form(None, ge=0),
    description: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    current_user: dict = Depends(require("products", "update")),
    db: Database = Depends(get_db),
):
    fields = {"name": name, "price": price, "stock": stock, "description": description}
    image_name = storage.save_upload(image, "products")
    with storage.discard_on_error("products", image_name):
        product = catalog.update_product(db, product_id, fields, image=image_name)
    return {"message": "Product updated", "product": serialize_doc(product)}


@app.delete("/products/{product_id}")
def delete_product(product_id: str, current_user: dict = Depends(require("products", "delete")),
                   db: Database = Depends(get_db)):
    product, image_deleted = catalog.delete_product(db, product_id)
    return _deleted_response("Product deleted", "product", product, image_deleted)


# Cart

@app.get("/cart")
def get_cart(current_user: dict = Depends(require("cart", "read")), db: Database = Depends(get_db)):
    cart = carts.get_or_empty(db, current_user["id"])
    message = "Cart" if cart["items"] else "Cart is empty"
    return {"message": message, "cart": serialize_doc(cart)}


@app.post("/cart")
def add_to_cart(item: CartItemInput, current_user: dict = Depends(require("cart", "update")),
                db: Database = Depends(get_db)):
    cart = carts.add_item(db, current_user["id"], item.product_id, item.quantity)
    return {"message": "Product added to cart", "cart": serialize_doc(cart)}


@app.patch("/cart/{item_id}")
def update_cart_item(item_id: str, payload: CartQuantityInput, current_user: dict = Depends(require("cart", "update")),
                     db: Database = Depends(get_db)):
    cart = carts.set_item_quantity(db, current_user["id"], item_id, payload.quantity)
    return {"message": "Quantity updated", "cart": serialize_doc(cart)}


@app.delete("/cart/{item_id}")
def remove_cart_item(item_id: str, current_user: dict = Depends(require("cart", "update")),
                     db: Database = Depends(get_db)):
    cart = carts.remove_item(db, current_user["id"], item_id)
    return {"message": "Item removed from cart", "cart": serialize_doc(cart)}


# Orders

@app.post("/orders/checkout", status_code=201)
def checkout(current_user: dict = Depends(require("orders", "checkout")), db: Database = Depends(get_db)):
    order = orders.checkout(db, current_user["id"])
    return {"message": "Checkout successful", "order": serialize_doc(order)}


@app.get("/orders")
def list_my_orders(current_user: dict = Depends(require("orders", "read")), db: Database = Depends(get_db)):
    return {"message": "Your orders", "orders": serialize_doc(orders.get_for_user(db, current_user["id"]))}


@app.get("/orders/admin")
def list_all_orders(current_user: dict = Depends(require("orders", "read_all")), db: Database = Depends(get_db)):
    return {"message": "All orders", "orders": serialize_doc(orders.get_all(db))}


@app.get("/orders/{order_id}")
def get_order(order_id: str, current_user: dict = Depends(require("orders", "read")),
              db: Database = Depends(get_db)):
    return {"message": f"Order {order_id}", "order": serialize_doc(orders.get_by_id(db, order_id, current_user["id"]))}


@app.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusInput,
                        current_user: dict = Depends(require("orders", "update")), db: Database = Depends(get_db)):
    order = orders.update_status(db, order_id, payload.status)
    return {"message": "Order status updated", "order": serialize_doc(order)}


@app.delete("/orders/{order_id}")
def delete_order(order_id: str, current_user: dict = Depends(require("orders", "delete")),
                 db: Database = Depends(get_db)):
    order = orders.delete_by_id(db, order_id)
    return {"message": "Order deleted", "order": serialize_doc(order)}


# Uploaded images

@app.get("/uploads/{folder}/{filename}")
def get_upload(folder: str, filename: str, current_user: dict = Depends(require("assets", "read"))):
    return FileResponse(storage.resolve_asset(folder, filename))


def _deleted_response(message: str, key: str, doc: dict, image_deleted: bool) -> dict:
    response = {"message": message, key: serialize_doc(doc)}
    if not image_deleted:
        response["warning"] = "Record deleted but its image could not be removed"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
