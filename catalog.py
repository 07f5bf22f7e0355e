"""Product ledger: catalog records and their stock counters."""

from typing import List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

import storage
from database import create_document, get_documents, now, to_object_id
from errors import NotFoundError, ValidationError
from logging_config import get_logger
from schemas import Product

logger = get_logger(__name__)

EDITABLE_FIELDS = ("name", "price", "stock", "description")


def _product_id(product_id) -> ObjectId:
    obj_id = to_object_id(product_id)
    if obj_id is None:
        raise NotFoundError("Product %s not found" % product_id)
    return obj_id


def create_product(db: Database, name: str, price: float, stock: int = 0,
                   description: Optional[str] = None, image: Optional[str] = None) -> dict:
    product = Product(name=name, price=price, stock=stock, description=description, image=image)
    inserted_id = create_document(db, "product", product)
    logger.info("product_created", product_id=str(inserted_id), stock=stock)
    return db["product"].find_one({"_id": inserted_id})


def list_products(db: Database) -> List[dict]:
    return get_documents(db, "product", sort=[("created_at", -1), ("_id", -1)])


def get_product(db: Database, product_id) -> dict:
    product = db["product"].find_one({"_id": _product_id(product_id)})
    if not product:
        raise NotFoundError("Product %s not found" % product_id)
    return product


def update_product(db: Database, product_id, fields: dict, image: Optional[str] = None) -> dict:
    """Apply a partial update. A new ``image`` replaces the old one and the old file is removed."""
    existing = get_product(db, product_id)
    update = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS and v is not None}
    if "description" in update and not str(update["description"]).strip():
        # a blank description clears it
        update["description"] = None
    if image:
        update["image"] = image
    if not update:
        raise ValidationError("No fields to update")
    # run the merged record through the schema so price/stock bounds still hold
    merged = {k: existing.get(k) for k in Product.model_fields}
    merged.update(update)
    Product(**merged)

    update["updated_at"] = now()
    db["product"].update_one({"_id": existing["_id"]}, {"$set": update})
    if image and existing.get("image") and existing["image"] != image:
        storage.delete_asset("products", existing["image"])
    logger.info("product_updated", product_id=str(existing["_id"]), fields=sorted(update))
    return db["product"].find_one({"_id": existing["_id"]})


def delete_product(db: Database, product_id) -> tuple:
    """Delete a product and its image.

    Returns ``(product, image_deleted)``; a failed image removal does not undo
    the record deletion.
    """
    product = get_product(db, product_id)
    db["product"].delete_one({"_id": product["_id"]})
    image_deleted = storage.delete_asset("products", product.get("image"))
    if not image_deleted:
        logger.warning("product_image_orphaned", product_id=str(product["_id"]), image=product.get("image"))
    logger.info("product_deleted", product_id=str(product["_id"]))
    return product, image_deleted


def decrement_stock(db: Database, product_id: ObjectId, quantity: int, session=None) -> Optional[dict]:
    """Atomically take ``quantity`` units; returns the updated product or None when stock is short."""
    return db["product"].find_one_and_update(
        {"_id": product_id, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": now()}},
        return_document=ReturnDocument.AFTER,
        session=session,
    )


def restore_stock(db: Database, product_id: ObjectId, quantity: int) -> None:
    db["product"].update_one(
        {"_id": product_id},
        {"$inc": {"stock": quantity}, "$set": {"updated_at": now()}},
    )
