"""Cart store: one cart document per user, line items carry name/price snapshots."""

from typing import Optional

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import catalog
from database import create_document, now, to_object_id
from errors import CapacityError, NotFoundError, ValidationError
from logging_config import get_logger
from schemas import Cart, CartItem

logger = get_logger(__name__)


def cart_total(cart: Optional[dict]) -> float:
    if not cart:
        return 0
    return sum(item["price_at_added"] * item["quantity"] for item in cart.get("items", []))


def find_cart(db: Database, user_id, session=None) -> Optional[dict]:
    return db["cart"].find_one({"user_id": to_object_id(user_id)}, session=session)


def with_total(cart: dict) -> dict:
    cart = dict(cart)
    cart["total"] = cart_total(cart)
    return cart


def get_or_empty(db: Database, user_id) -> dict:
    """Return the user's cart with its total, or an empty cart without creating one."""
    cart = find_cart(db, user_id)
    if not cart:
        return {"items": [], "total": 0}
    return with_total(cart)


def _check_quantity(quantity) -> int:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    return quantity


def _find_item(cart: Optional[dict], item_id) -> dict:
    if not cart:
        raise NotFoundError("Cart not found")
    obj_id = to_object_id(item_id)
    for item in cart.get("items", []):
        if item["_id"] == obj_id:
            return item
    raise NotFoundError("Item not found in cart")


def _load_or_create(db: Database, user_id: ObjectId) -> dict:
    cart = find_cart(db, user_id)
    if cart:
        return cart
    try:
        create_document(db, "cart", Cart(user_id=user_id))
    except DuplicateKeyError:
        # a concurrent request created it first
        pass
    return find_cart(db, user_id)


def _save_items(db: Database, cart: dict) -> dict:
    db["cart"].update_one(
        {"_id": cart["_id"]},
        {"$set": {"items": cart["items"], "updated_at": now()}},
    )
    return with_total(db["cart"].find_one({"_id": cart["_id"]}))


def add_item(db: Database, user_id, product_id, quantity: int) -> dict:
    """Add ``quantity`` of a product; quantities for a product already in the cart accumulate."""
    _check_quantity(quantity)
    product = catalog.get_product(db, product_id)
    if quantity > product["stock"]:
        raise CapacityError("Not enough stock for %s" % product["name"])

    cart = _load_or_create(db, to_object_id(user_id))
    existing = next((it for it in cart["items"] if it["product_id"] == product["_id"]), None)
    if existing:
        if existing["quantity"] + quantity > product["stock"]:
            raise CapacityError("Quantity exceeds available stock for %s" % product["name"])
        existing["quantity"] += quantity
    else:
        item = CartItem(
            product_id=product["_id"],
            name_at_added=product["name"],
            price_at_added=product["price"],
            quantity=quantity,
        )
        cart["items"].append(item.model_dump(by_alias=True))

    logger.debug("cart_item_added", user_id=str(user_id), product_id=str(product["_id"]), quantity=quantity)
    return _save_items(db, cart)


def set_item_quantity(db: Database, user_id, item_id, quantity: int) -> dict:
    """Overwrite a line item's quantity."""
    _check_quantity(quantity)
    cart = find_cart(db, user_id)
    item = _find_item(cart, item_id)
    product = catalog.get_product(db, item["product_id"])
    if quantity > product["stock"]:
        raise CapacityError("Quantity exceeds available stock for %s" % product["name"])
    item["quantity"] = quantity
    return _save_items(db, cart)


def remove_item(db: Database, user_id, item_id) -> dict:
    cart = find_cart(db, user_id)
    item = _find_item(cart, item_id)
    cart["items"] = [it for it in cart["items"] if it["_id"] != item["_id"]]
    return _save_items(db, cart)


def delete_for_user(db: Database, user_id) -> bool:
    result = db["cart"].delete_one({"user_id": to_object_id(user_id)})
    return result.deleted_count > 0
