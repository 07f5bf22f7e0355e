"""Order ledger and the checkout that turns a cart into an order."""

from typing import List

from pymongo.database import Database

import carts
import catalog
import config
from database import create_document, get_documents, now, to_object_id
from errors import NotFoundError, ValidationError
from logging_config import get_logger
from schemas import Order, OrderItem, OrderStatus

logger = get_logger(__name__)

STATUSES = [status.value for status in OrderStatus]


def checkout(db: Database, user_id) -> dict:
    """Reserve stock for every cart line, record the order and delete the cart.

    Either every step lands or none does. With ``DATABASE_TRANSACTIONS`` the
    work runs in a server-side transaction; otherwise applied writes are
    undone by hand when a later step fails.
    """
    if config.DATABASE_TRANSACTIONS:
        with db.client.start_session() as session:
            return session.with_transaction(lambda s: _place_order(db, user_id, session=s))
    return _place_order(db, user_id)


def _place_order(db: Database, user_id, session=None) -> dict:
    user_oid = to_object_id(user_id)
    cart = carts.find_cart(db, user_oid, session=session)
    if not cart or not cart.get("items"):
        raise ValidationError("Cart is empty")

    for item in cart["items"]:
        product = db["product"].find_one({"_id": item["product_id"]}, session=session)
        if product is None:
            raise ValidationError("Product %s is no longer available" % item["name_at_added"])
        if product["stock"] < item["quantity"]:
            raise ValidationError('Not enough stock for "%s"' % product["name"])

    reserved = []
    order_id = None
    claimed = None
    try:
        # the cart is claimed before any stock moves; a second checkout of it finds nothing
        claimed = db["cart"].find_one_and_delete({"_id": cart["_id"]}, session=session)
        if not claimed or not claimed.get("items"):
            raise ValidationError("Cart is empty")

        order_items = []
        for item in claimed["items"]:
            product = catalog.decrement_stock(db, item["product_id"], item["quantity"], session=session)
            if product is None:
                raise ValidationError('Not enough stock for "%s"' % item["name_at_added"])
            reserved.append((item["product_id"], item["quantity"]))
            order_items.append(OrderItem(
                product_id=product["_id"],
                name_at_order=product["name"],
                price_at_order=product["price"],
                quantity=item["quantity"],
            ))

        order = Order(
            user_id=user_oid,
            items=order_items,
            total=sum(i.price_at_order * i.quantity for i in order_items),
            status=OrderStatus.PENDING,
        )
        order_id = create_document(db, "order", order, session=session)
    except Exception:
        if session is None:
            _compensate(db, reserved, order_id, claimed)
        raise

    logger.info("checkout_completed", user_id=str(user_oid), order_id=str(order_id),
                items=len(order_items), total=order.total)
    return db["order"].find_one({"_id": order_id}, session=session)


def _compensate(db: Database, reserved: list, order_id, cart) -> None:
    for product_id, quantity in reserved:
        try:
            catalog.restore_stock(db, product_id, quantity)
        except Exception:
            logger.exception("stock_restore_failed", product_id=str(product_id), quantity=quantity)
    if order_id is not None:
        try:
            db["order"].delete_one({"_id": order_id})
        except Exception:
            logger.exception("order_rollback_failed", order_id=str(order_id))
    if cart is not None:
        try:
            db["cart"].insert_one(cart)
        except Exception:
            logger.exception("cart_restore_failed", cart_id=str(cart["_id"]))
    logger.warning("checkout_rolled_back", reserved=len(reserved), order_id=str(order_id) if order_id else None)


def _join_products(db: Database, orders: List[dict]) -> List[dict]:
    product_ids = {item["product_id"] for order in orders for item in order.get("items", [])}
    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": list(product_ids)}})}
    for order in orders:
        for item in order.get("items", []):
            product = products.get(item["product_id"])
            item["product"] = (
                {"_id": product["_id"], "name": product["name"], "price": product["price"], "image": product.get("image")}
                if product else None
            )
    return orders


def get_for_user(db: Database, user_id) -> List[dict]:
    orders = get_documents(db, "order", {"user_id": to_object_id(user_id)}, sort=[("created_at", -1), ("_id", -1)])
    return _join_products(db, orders)


def get_all(db: Database) -> List[dict]:
    orders = get_documents(db, "order", sort=[("created_at", -1), ("_id", -1)])
    user_ids = {order["user_id"] for order in orders}
    users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": list(user_ids)}})}
    for order in orders:
        user = users.get(order["user_id"])
        order["user"] = {"_id": user["_id"], "name": user["name"], "email": user["email"]} if user else None
    return _join_products(db, orders)


def get_by_id(db: Database, order_id, user_id) -> dict:
    # someone else's order is reported as missing
    order_oid = to_object_id(order_id)
    order = db["order"].find_one({"_id": order_oid, "user_id": to_object_id(user_id)}) if order_oid else None
    if not order:
        raise NotFoundError("Order not found")
    return _join_products(db, [order])[0]


def update_status(db: Database, order_id, status: str) -> dict:
    if status not in STATUSES:
        raise ValidationError("Invalid status, expected one of: %s" % ", ".join(STATUSES))
    order_oid = to_object_id(order_id)
    result = db["order"].update_one({"_id": order_oid}, {"$set": {"status": status, "updated_at": now()}}) if order_oid else None
    if not result or result.matched_count == 0:
        raise NotFoundError("Order not found")
    logger.info("order_status_updated", order_id=str(order_oid), status=status)
    return db["order"].find_one({"_id": order_oid})


def delete_by_id(db: Database, order_id) -> dict:
    """Remove an order record. Reserved stock stays reserved."""
    order_oid = to_object_id(order_id)
    order = db["order"].find_one_and_delete({"_id": order_oid}) if order_oid else None
    if not order:
        raise NotFoundError("Order not found")
    logger.info("order_deleted", order_id=str(order_oid))
    return order
